"""NGSI-LD transport, entity operations and attribute projection."""

from citydash.core.ngsi.operations import (
    AttrsUpdateResult,
    NgsiLdOperations,
    UpsertOutcome,
    UpsertResult,
)
from citydash.core.ngsi.transport import (
    NGSI_LD_CORE_CONTEXT,
    NGSI_LD_DEFAULT_CONTEXT,
    BrokerConfig,
    BrokerTransport,
    BrokerUnavailableError,
    ConflictError,
    EntityNotFoundError,
    NgsiError,
    build_link_header,
)

__all__ = [
    "AttrsUpdateResult",
    "NgsiLdOperations",
    "UpsertOutcome",
    "UpsertResult",
    "NGSI_LD_CORE_CONTEXT",
    "NGSI_LD_DEFAULT_CONTEXT",
    "BrokerConfig",
    "BrokerTransport",
    "BrokerUnavailableError",
    "ConflictError",
    "EntityNotFoundError",
    "NgsiError",
    "build_link_header",
]
