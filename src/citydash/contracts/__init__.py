"""Public contracts for the NGSI-LD sync service."""
from citydash.contracts.entity import (
    DataModel,
    DiscoveredEntity,
    EntityRecord,
    MutationContext,
    SKIP_SYNC,
    Source,
    SyncStatus,
    TenantScope,
    normalize_type,
    short_entity_id,
)
from citydash.contracts.store import EntityStore, StoreListener

__all__ = [
    "DataModel",
    "DiscoveredEntity",
    "EntityRecord",
    "MutationContext",
    "SKIP_SYNC",
    "Source",
    "SyncStatus",
    "TenantScope",
    "normalize_type",
    "short_entity_id",
    "EntityStore",
    "StoreListener",
]
