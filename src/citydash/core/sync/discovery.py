# citydash/core/sync/discovery.py
"""
Entity discovery and import.

Discovery walks every tenant scope of a Source and lists what the broker
holds, marking entities already mirrored locally. Import turns a selection
of discovered entities into local records without pushing them back: the
broker copy is authoritative and already exists.

Both operations isolate failures per unit of work (one tenant scope, one
entity) and always return an itemized result.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence

from citydash.contracts.entity import (
    SKIP_SYNC,
    DataModel,
    DiscoveredEntity,
    EntityRecord,
    Source,
    SyncStatus,
    TenantScope,
    normalize_type,
    short_entity_id,
)
from citydash.contracts.store import EntityStore
from citydash.core.config import settings
from citydash.core.errors import (
    ConfigurationError,
    DuplicateEntityError,
    SourceNotFoundError,
)
from citydash.core.ngsi.operations import entity_path
from citydash.core.ngsi.transport import ENTITIES_PATH, NGSI_LD_DEFAULT_CONTEXT, NgsiError
from citydash.core.sync.clients import BrokerClientFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportCandidate:
    """One entity selected for import, as sent by the import UI."""

    entity_id: str
    type: str
    service: str = ""
    service_path: str = "/"
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class DiscoveryResult:
    entities: list[DiscoveredEntity] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.entities)

    @property
    def already_synced(self) -> int:
        return sum(1 for e in self.entities if e.already_synced)


@dataclass
class ImportFailure:
    id: str
    error: str


@dataclass
class ImportResult:
    success: list[str] = field(default_factory=list)
    failed: list[ImportFailure] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"Imported {len(self.success)} entities"


@dataclass(frozen=True)
class EntityDetails:
    id: str
    type: str
    attributes: dict[str, Any]


class DiscoveryService:
    def __init__(
        self,
        store: EntityStore,
        *,
        clients: BrokerClientFactory | None = None,
    ) -> None:
        self._store = store
        self._clients = clients or BrokerClientFactory()

    async def _require_source(self, source_id: str | None) -> Source:
        if not source_id:
            raise ConfigurationError("Source ID is required")
        source = await self._store.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        if not source.broker_url:
            raise ConfigurationError("Source broker URL not configured")
        return source

    # -- discovery ------------------------------------------------------------

    async def discover_entities(self, source_id: str) -> DiscoveryResult:
        source = await self._require_source(source_id)
        result = DiscoveryResult()
        found: list[tuple[dict[str, Any], TenantScope]] = []

        # Scopes are queried one after another; a failure only loses that scope.
        for scope in source.scopes():
            try:
                entities = await self._list_scope(source, scope)
            except NgsiError as exc:
                logger.warning(
                    "Discovery failed for source %s scope %s: %s",
                    source.id,
                    scope.label,
                    exc.reason,
                )
                result.errors.append(f"{scope.label}: {exc.reason}")
                continue
            except Exception as exc:
                logger.exception(
                    "Discovery failed for source %s scope %s", source.id, scope.label
                )
                result.errors.append(f"{scope.label}: {exc}")
                continue
            found.extend((entity, scope) for entity in entities)

        local = await self._store.find_entities(source_id=source.id)
        synced_ids = {r.entity_id for r in local}

        for entity, scope in found:
            result.entities.append(
                DiscoveredEntity(
                    id=entity.get("id", ""),
                    type=entity.get("type", ""),
                    service=scope.service,
                    service_path=scope.service_path,
                    already_synced=entity.get("id") in synced_ids,
                )
            )

        logger.info(
            "Discovered %d entities on source %s (%d already synced, %d scope errors)",
            result.total,
            source.id,
            result.already_synced,
            len(result.errors),
        )
        return result

    async def _list_scope(self, source: Source, scope: TenantScope) -> list[dict[str, Any]]:
        transport = self._clients.transport_for(source, scope)
        response = await transport.request(
            "GET",
            ENTITIES_PATH,
            headers={"Accept": "application/json"},
            params={
                "limit": settings.discovery_limit,
                "options": "keyValues",
                "local": "true",
            },
        )
        data = response.json() or []
        return [e for e in data if isinstance(e, dict)]

    # -- import ---------------------------------------------------------------

    async def import_entities(
        self, source_id: str, entities: Sequence[ImportCandidate]
    ) -> ImportResult:
        if not source_id or not entities:
            raise ConfigurationError("Source ID and entities are required")
        source = await self._require_source(source_id)

        result = ImportResult()
        for candidate in entities:
            try:
                await self._import_one(source, candidate)
            except DuplicateEntityError as exc:
                result.failed.append(ImportFailure(id=candidate.entity_id, error=str(exc)))
                continue
            except Exception as exc:
                logger.exception("Import of %s failed", candidate.entity_id)
                result.failed.append(ImportFailure(id=candidate.entity_id, error=str(exc)))
                continue
            result.success.append(candidate.entity_id)

        logger.info(
            "Imported %d/%d entities into source %s",
            len(result.success),
            len(entities),
            source.id,
        )
        return result

    async def _import_one(self, source: Source, candidate: ImportCandidate) -> None:
        short_type = normalize_type(candidate.type)
        data_model = await self._resolve_data_model(candidate.type, short_type)

        if await self._store.find_entities(entity_id=candidate.entity_id, limit=1):
            raise DuplicateEntityError(candidate.entity_id)

        record = EntityRecord(
            entity_id=candidate.entity_id,
            short_id=short_entity_id(candidate.entity_id),
            type=short_type,
            source_id=source.id,
            data_model_id=data_model.id,
            service=candidate.service or "",
            service_path=candidate.service_path or "/",
            attributes=dict(candidate.attributes or {}),
            sync_status=SyncStatus.SYNCED,
            last_sync_time=datetime.now(timezone.utc),
        )
        await self._store.create_entity(record, context=SKIP_SYNC)

    async def _resolve_data_model(self, entity_type: str, short_type: str) -> DataModel:
        model = await self._store.find_data_model([entity_type, short_type])
        if model is not None:
            return model
        return await self._store.create_data_model(short_type, NGSI_LD_DEFAULT_CONTEXT)

    # -- details --------------------------------------------------------------

    async def fetch_entity_details(
        self,
        source_id: str,
        entity_id: str,
        *,
        service: str | None = None,
        service_path: str | None = None,
    ) -> EntityDetails:
        """Broker copy of one entity, split into envelope and attributes."""
        if not source_id or not entity_id:
            raise ConfigurationError("Source ID and Entity ID are required")
        source = await self._require_source(source_id)

        scope = TenantScope(service=service or "", service_path=service_path or "/")
        transport = self._clients.transport_for(source, scope)
        response = await transport.request(
            "GET",
            entity_path(entity_id),
            headers={"Accept": "application/json"},
        )
        data = dict(response.json())
        attributes = {k: v for k, v in data.items() if k not in ("id", "type", "@context")}
        return EntityDetails(
            id=data.get("id", entity_id),
            type=data.get("type", ""),
            attributes=attributes,
        )
