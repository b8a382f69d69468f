# citydash/contracts/entity.py
"""
Contracts for the records the sync engine works on.

A Source is a configured broker endpoint, a DataModel describes an entity
type, and an EntityRecord is the local mirror of a remote NGSI-LD entity.
DiscoveredEntity only lives for the duration of an import session.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterator

DEFAULT_SERVICE = ""
DEFAULT_SERVICE_PATH = "/"


class SyncStatus(str, Enum):
    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


def normalize_type(entity_type: str) -> str:
    """Short form of an entity type: the part after the last ``/``.

    ``https://smartdatamodels.org/dataModel.Weather/WeatherObserved`` and
    ``WeatherObserved`` both normalize to ``WeatherObserved``.
    """
    if "/" in entity_type:
        return entity_type.rsplit("/", 1)[-1] or entity_type
    return entity_type


def short_entity_id(entity_id: str) -> str:
    """Last ``:``-separated segment of an entity URN."""
    return entity_id.rsplit(":", 1)[-1] or entity_id


@dataclass(frozen=True)
class TenantScope:
    """A ``(service, servicePath)`` pair isolating data inside one broker."""

    service: str = DEFAULT_SERVICE
    service_path: str = DEFAULT_SERVICE_PATH

    @property
    def label(self) -> str:
        return f"{self.service or '(default)'}{self.service_path}"


@dataclass(frozen=True)
class Source:
    """A configured broker endpoint.

    Attributes:
        broker_url: Base URL of the context broker.
        auth_token: Sent as ``X-Auth-Token`` when set.
        services: ``Fiware-Service`` values; empty means the default tenant.
        service_paths: ``Fiware-ServicePath`` values; empty means ``/``.
        proxy_url: Optional HTTPS proxy the browser should use instead.
    """

    id: str
    name: str
    broker_url: str
    auth_token: str | None = None
    services: list[str] = field(default_factory=list)
    service_paths: list[str] = field(default_factory=list)
    proxy_url: str | None = None

    def service_values(self) -> list[str]:
        return [s or DEFAULT_SERVICE for s in self.services] or [DEFAULT_SERVICE]

    def service_path_values(self) -> list[str]:
        return [p or DEFAULT_SERVICE_PATH for p in self.service_paths] or [
            DEFAULT_SERVICE_PATH
        ]

    def scopes(self) -> Iterator[TenantScope]:
        """Cross product of services (outer) and service paths (inner)."""
        for service in self.service_values():
            for service_path in self.service_path_values():
                yield TenantScope(service=service, service_path=service_path)


@dataclass(frozen=True)
class DataModel:
    id: str
    model: str
    context_url: str | None = None


@dataclass
class EntityRecord:
    """Local mirror of a remote NGSI-LD entity.

    ``attributes`` maps attribute names to NGSI-LD value wrappers, e.g.
    ``{"temperature": {"type": "Property", "value": 21.5}}``.
    """

    entity_id: str
    type: str
    source_id: str
    id: str | None = None
    short_id: str | None = None
    data_model_id: str | None = None
    service: str = DEFAULT_SERVICE
    service_path: str = DEFAULT_SERVICE_PATH
    attributes: dict[str, Any] = field(default_factory=dict)
    sync_status: SyncStatus = SyncStatus.PENDING
    last_sync_time: datetime | None = None
    last_sync_error: str | None = None

    @property
    def scope(self) -> TenantScope:
        return TenantScope(
            service=self.service or DEFAULT_SERVICE,
            service_path=self.service_path or DEFAULT_SERVICE_PATH,
        )


@dataclass(frozen=True)
class DiscoveredEntity:
    id: str
    type: str
    service: str
    service_path: str
    already_synced: bool = False


@dataclass(frozen=True)
class MutationContext:
    """Context bag passed along with every local mutation.

    ``skip_sync`` suppresses the push-to-broker reconciliation, used when
    the data already originates from the broker or when only sync-state
    metadata is written.
    """

    skip_sync: bool = False


SKIP_SYNC = MutationContext(skip_sync=True)
