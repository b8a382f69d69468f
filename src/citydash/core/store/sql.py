# citydash/core/store/sql.py
"""SQLAlchemy-backed implementation of the local entity store."""
from __future__ import annotations

import dataclasses
import logging
from typing import Any, Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from citydash.contracts.entity import (
    DataModel,
    EntityRecord,
    MutationContext,
    Source,
    SyncStatus,
)
from citydash.contracts.store import EntityStore
from citydash.core.db import create_sessionmaker, init_db, session_scope
from citydash.core.errors import DuplicateEntityError, EntityRecordNotFoundError
from citydash.core.store.models import DataModelRow, EntityRow, SourceRow

logger = logging.getLogger(__name__)

_UPDATABLE = frozenset(
    f.name for f in dataclasses.fields(EntityRecord) if f.name != "id"
)


class SqlStore(EntityStore):
    def __init__(self, engine: AsyncEngine) -> None:
        super().__init__()
        self._engine = engine
        self._sessionmaker = create_sessionmaker(engine)

    async def init(self) -> None:
        await init_db(self._engine)

    async def close(self) -> None:
        await self._engine.dispose()

    # -- ngsi-sources ---------------------------------------------------------

    async def get_source(self, source_id: str) -> Source | None:
        async with session_scope(self._sessionmaker) as session:
            row = await session.get(SourceRow, source_id)
            return row.to_contract() if row else None

    async def list_sources(self) -> list[Source]:
        async with session_scope(self._sessionmaker) as session:
            rows = await session.scalars(select(SourceRow).order_by(SourceRow.created_at))
            return [r.to_contract() for r in rows]

    async def create_source(self, source: Source) -> Source:
        row = SourceRow(
            name=source.name,
            broker_url=source.broker_url,
            auth_token=source.auth_token,
            proxy_url=source.proxy_url,
            services=list(source.services),
            service_paths=list(source.service_paths),
        )
        if source.id:
            row.id = source.id
        async with session_scope(self._sessionmaker) as session:
            session.add(row)
        logger.info("Created source %s (%s)", row.id, row.broker_url)
        return row.to_contract()

    # -- ngsi-data-models -----------------------------------------------------

    async def get_data_model(self, model_id: str) -> DataModel | None:
        async with session_scope(self._sessionmaker) as session:
            row = await session.get(DataModelRow, model_id)
            return row.to_contract() if row else None

    async def find_data_model(self, names: Sequence[str]) -> DataModel | None:
        async with session_scope(self._sessionmaker) as session:
            row = await session.scalar(
                select(DataModelRow)
                .where(DataModelRow.model.in_(list(names)))
                .order_by(DataModelRow.created_at)
                .limit(1)
            )
            return row.to_contract() if row else None

    async def create_data_model(
        self, model: str, context_url: str | None = None
    ) -> DataModel:
        row = DataModelRow(model=model, context_url=context_url)
        async with session_scope(self._sessionmaker) as session:
            session.add(row)
        logger.info("Created data model %s", model)
        return row.to_contract()

    # -- ngsi-entities --------------------------------------------------------

    async def get_entity(self, record_id: str) -> EntityRecord | None:
        async with session_scope(self._sessionmaker) as session:
            row = await session.get(EntityRow, record_id)
            return row.to_contract() if row else None

    async def find_entities(
        self,
        *,
        source_id: str | None = None,
        entity_id: str | None = None,
        limit: int | None = None,
    ) -> list[EntityRecord]:
        stmt = select(EntityRow).order_by(EntityRow.created_at)
        if source_id is not None:
            stmt = stmt.where(EntityRow.source_id == source_id)
        if entity_id is not None:
            stmt = stmt.where(EntityRow.entity_id == entity_id)
        if limit:
            stmt = stmt.limit(limit)
        async with session_scope(self._sessionmaker) as session:
            rows = await session.scalars(stmt)
            return [r.to_contract() for r in rows]

    async def create_entity(
        self,
        record: EntityRecord,
        *,
        context: MutationContext = MutationContext(),
    ) -> EntityRecord:
        row = EntityRow(
            entity_id=record.entity_id,
            short_id=record.short_id,
            type=record.type,
            source_id=record.source_id,
            data_model_id=record.data_model_id,
            service=record.service,
            service_path=record.service_path,
            attributes=dict(record.attributes),
            sync_status=SyncStatus(record.sync_status).value,
            last_sync_time=record.last_sync_time,
            last_sync_error=record.last_sync_error,
        )
        if record.id:
            row.id = record.id
        try:
            async with session_scope(self._sessionmaker) as session:
                session.add(row)
        except IntegrityError as exc:
            if await self.find_entities(entity_id=record.entity_id):
                raise DuplicateEntityError(record.entity_id) from exc
            raise

        created = row.to_contract()
        await self._emit_saved(created, context)
        return created

    async def update_entity(
        self,
        record_id: str,
        changes: Mapping[str, Any],
        *,
        context: MutationContext = MutationContext(),
    ) -> EntityRecord:
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown entity fields: {sorted(unknown)}")

        async with session_scope(self._sessionmaker) as session:
            row = await session.get(EntityRow, record_id)
            if row is None:
                raise EntityRecordNotFoundError(record_id)
            for name, value in changes.items():
                if name == "sync_status":
                    value = SyncStatus(value).value
                elif name == "attributes":
                    value = dict(value)
                setattr(row, name, value)

        updated = row.to_contract()
        await self._emit_saved(updated, context)
        return updated

    async def delete_entity(
        self,
        record_id: str,
        *,
        context: MutationContext = MutationContext(),
    ) -> EntityRecord | None:
        async with session_scope(self._sessionmaker) as session:
            row = await session.get(EntityRow, record_id)
            if row is None:
                return None
            deleted = row.to_contract()
            await session.delete(row)

        logger.info("Deleted entity record %s (%s)", record_id, deleted.entity_id)
        await self._emit_deleted(deleted, context)
        return deleted
