"""Entity discovery/import and local-to-broker reconciliation."""

from citydash.core.sync.clients import BrokerClientFactory
from citydash.core.sync.discovery import (
    DiscoveryResult,
    DiscoveryService,
    EntityDetails,
    ImportCandidate,
    ImportFailure,
    ImportResult,
)
from citydash.core.sync.reconcile import SyncReconciler, SyncReport

__all__ = [
    "BrokerClientFactory",
    "DiscoveryResult",
    "DiscoveryService",
    "EntityDetails",
    "ImportCandidate",
    "ImportFailure",
    "ImportResult",
    "SyncReconciler",
    "SyncReport",
]
