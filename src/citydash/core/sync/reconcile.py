# citydash/core/sync/reconcile.py
"""
Sync-state reconciliation.

Registered as a store listener: after a local entity is created or updated
(without ``skip_sync``) the change is pushed to the broker with upsert
semantics and the outcome is written back as sync-state metadata. Failures
are recorded, never retried; retrying is the explicit ``resync`` action.

This is not a durable outbox. A crash between the local write and the push
leaves the record ``pending`` until someone resyncs it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from citydash.contracts.entity import (
    SKIP_SYNC,
    DataModel,
    EntityRecord,
    MutationContext,
    Source,
    SyncStatus,
    normalize_type,
)
from citydash.contracts.store import EntityStore
from citydash.core.errors import (
    ConfigurationError,
    EntityRecordNotFoundError,
    SourceNotFoundError,
)
from citydash.core.ngsi.operations import (
    AttrsUpdateResult,
    NgsiLdOperations,
    UpsertOutcome,
    UpsertResult,
)
from citydash.core.ngsi.transport import ConflictError, EntityNotFoundError, NgsiError
from citydash.core.sync.clients import BrokerClientFactory

logger = logging.getLogger(__name__)

NOT_IN_BROKER_MESSAGE = (
    'Entity not found in Context Broker. Try "Force Resync" to create it.'
)


@dataclass(frozen=True)
class SyncReport:
    record_id: str
    entity_id: str
    outcome: UpsertOutcome
    partial: bool = False
    multi_status: Any = None


def error_message(exc: BaseException) -> str:
    if isinstance(exc, NgsiError):
        return exc.reason
    return str(exc) or type(exc).__name__


def partial_sync_note(multi_status: Any) -> str:
    """``last_sync_error`` text for a 207 answer, naming rejected attributes."""
    names: list[str] = []
    if isinstance(multi_status, Mapping):
        for item in multi_status.get("notUpdated") or []:
            if isinstance(item, Mapping) and item.get("attributeName"):
                names.append(str(item["attributeName"]))
    if names:
        return f"Partially synced; not updated: {', '.join(names)}"
    return "Partially synced"


def build_entity_body(record: EntityRecord, entity_type: str) -> dict[str, Any]:
    return {"id": record.entity_id, "type": entity_type, **record.attributes}


class SyncReconciler:
    """Pushes local entity mutations to the owning broker."""

    def __init__(
        self,
        store: EntityStore,
        *,
        clients: BrokerClientFactory | None = None,
    ) -> None:
        self._store = store
        self._clients = clients or BrokerClientFactory()

    # -- store listener -------------------------------------------------------

    async def on_entity_saved(
        self, record: EntityRecord, context: MutationContext
    ) -> None:
        if context.skip_sync or record.id is None:
            return
        try:
            await self.sync_entity(record)
        except Exception as exc:
            # Recorded on the entity; the hook never fails the local write.
            logger.debug("Post-save sync of %s left in error state: %s", record.entity_id, exc)

    async def on_entity_deleted(
        self, record: EntityRecord, context: MutationContext
    ) -> None:
        if context.skip_sync:
            return
        try:
            ops = await self._operations(record)
            await ops.delete_entity(record.entity_id)
        except Exception as exc:
            logger.warning(
                "Could not remove %s from broker: %s", record.entity_id, error_message(exc)
            )

    # -- explicit actions -----------------------------------------------------

    async def resync(self, record_id: str) -> SyncReport:
        """User-triggered push of one entity.

        Configuration problems raise before any broker call. Broker errors
        are recorded on the entity and re-raised. A 409 from the create
        branch means another writer created the entity first and counts as
        success.
        """
        record = await self._require_record(record_id)
        source, model = await self._resolve(record)
        result = await self.sync_entity(
            record, source=source, model=model, conflict_ok=True
        )
        return SyncReport(
            record_id=record_id,
            entity_id=record.entity_id,
            outcome=result.outcome,
            partial=result.partial,
            multi_status=result.multi_status,
        )

    async def update_attributes(
        self, record_id: str, attrs: Mapping[str, Any]
    ) -> AttrsUpdateResult:
        """PATCH attributes on the broker and merge them into the local record."""
        if not attrs:
            raise ConfigurationError("Request body cannot be empty")
        record = await self._require_record(record_id)
        ops = await self._operations(record)

        result = await ops.update_entity_attrs(record.entity_id, attrs)
        await self._store_attributes(
            record_id, {**record.attributes, **attrs}, result
        )
        return result

    async def append_attributes(
        self, record_id: str, attrs: Mapping[str, Any]
    ) -> AttrsUpdateResult:
        """POST attributes the broker copy does not have yet."""
        if not attrs:
            raise ConfigurationError("Request body cannot be empty")
        record = await self._require_record(record_id)
        ops = await self._operations(record)

        result = await ops.append_entity_attrs(record.entity_id, attrs)
        await self._store_attributes(
            record_id, {**record.attributes, **attrs}, result
        )
        return result

    async def delete_attribute(self, record_id: str, attr_name: str) -> None:
        """Remove one attribute from the broker copy and the local record."""
        if not attr_name:
            raise ConfigurationError("Attribute name is required")
        record = await self._require_record(record_id)
        ops = await self._operations(record)

        await ops.delete_entity_attr(record.entity_id, attr_name)
        remaining = {k: v for k, v in record.attributes.items() if k != attr_name}
        await self._store_attributes(record_id, remaining, None)

    async def fetch_live(
        self, record_id: str, *, embed_context: bool = False
    ) -> dict[str, Any]:
        """Current broker state of a local entity."""
        record = await self._require_record(record_id)
        ops = await self._operations(record)
        try:
            return await ops.get_entity(record.entity_id, embed_context=embed_context)
        except EntityNotFoundError as exc:
            raise EntityNotFoundError(
                NOT_IN_BROKER_MESSAGE,
                404,
                type=exc.type,
                title=exc.title,
                detail=NOT_IN_BROKER_MESSAGE,
                body=exc.body,
            ) from exc

    # -- internals ------------------------------------------------------------

    async def _require_record(self, record_id: str) -> EntityRecord:
        if not record_id:
            raise ConfigurationError("Entity ID is required")
        record = await self._store.get_entity(record_id)
        if record is None:
            raise EntityRecordNotFoundError(record_id)
        if not record.entity_id:
            raise ConfigurationError("Entity ID (URN) not set")
        return record

    async def _resolve(self, record: EntityRecord) -> tuple[Source, DataModel | None]:
        source = await self._store.get_source(record.source_id)
        if source is None:
            raise SourceNotFoundError(record.source_id)
        if not source.broker_url:
            raise ConfigurationError("Source broker URL not configured")
        model = None
        if record.data_model_id:
            model = await self._store.get_data_model(record.data_model_id)
        return source, model

    async def _operations(self, record: EntityRecord) -> NgsiLdOperations:
        source, model = await self._resolve(record)
        return self._clients.operations_for(
            source, record.scope, model.context_url if model else None
        )

    async def _store_attributes(
        self,
        record_id: str,
        attributes: dict[str, Any],
        result: AttrsUpdateResult | None,
    ) -> None:
        partial = result is not None and result.partial
        await self._store.update_entity(
            record_id,
            {
                "attributes": attributes,
                "sync_status": SyncStatus.SYNCED,
                "last_sync_time": _now(),
                "last_sync_error": (
                    partial_sync_note(result.multi_status) if partial else None
                ),
            },
            context=SKIP_SYNC,
        )

    # -- push ----------------------------------------------------------------

    async def sync_entity(
        self,
        record: EntityRecord,
        *,
        source: Source | None = None,
        model: DataModel | None = None,
        conflict_ok: bool = False,
    ) -> UpsertResult:
        """Upsert ``record`` on its broker and store the outcome on it.

        Any failure is written to ``last_sync_error`` and re-raised.
        """
        try:
            if source is None:
                source, model = await self._resolve(record)
            entity_type = normalize_type(record.type or (model.model if model else ""))
            if not entity_type:
                raise ConfigurationError("Entity type not set")

            ops = self._clients.operations_for(
                source, record.scope, model.context_url if model else None
            )
            try:
                result = await ops.upsert_entity(build_entity_body(record, entity_type))
            except ConflictError:
                if not conflict_ok:
                    raise
                logger.info("Entity %s was created concurrently", record.entity_id)
                result = UpsertResult(UpsertOutcome.UPDATED)
        except Exception as exc:
            message = error_message(exc)
            logger.warning("Sync of %s failed: %s", record.entity_id, message)
            await self._store.update_entity(
                record.id,
                {
                    "sync_status": SyncStatus.ERROR,
                    "last_sync_time": _now(),
                    "last_sync_error": message,
                },
                context=SKIP_SYNC,
            )
            raise

        # A 207 still counts as synced; the rejected attributes go in the note
        note = partial_sync_note(result.multi_status) if result.partial else None
        await self._store.update_entity(
            record.id,
            {
                "sync_status": SyncStatus.SYNCED,
                "last_sync_time": _now(),
                "last_sync_error": note,
            },
            context=SKIP_SYNC,
        )
        logger.info("Synced %s (%s)", record.entity_id, result.outcome.value)
        return result


def _now() -> datetime:
    return datetime.now(timezone.utc)
