# citydash/contracts/store.py
"""
Local persistence contract.

The store exposes the three collections the sync engine needs
(``ngsi-sources``, ``ngsi-data-models``, ``ngsi-entities``). Every entity
mutation takes a ``MutationContext`` and, once committed, is announced to
the registered listeners. The reconciliation hook is one such listener;
any host can wire its own persistence callbacks to the same contract.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Protocol, Sequence

from citydash.contracts.entity import (
    DataModel,
    EntityRecord,
    MutationContext,
    Source,
)

logger = logging.getLogger(__name__)


class StoreListener(Protocol):
    async def on_entity_saved(
        self, record: EntityRecord, context: MutationContext
    ) -> None: ...

    async def on_entity_deleted(
        self, record: EntityRecord, context: MutationContext
    ) -> None: ...


class EntityStore(ABC):
    """Abstract local store with post-commit mutation listeners."""

    def __init__(self) -> None:
        self._listeners: list[StoreListener] = []

    def add_listener(self, listener: StoreListener) -> None:
        self._listeners.append(listener)

    async def _emit_saved(self, record: EntityRecord, context: MutationContext) -> None:
        for listener in self._listeners:
            await listener.on_entity_saved(record, context)

    async def _emit_deleted(self, record: EntityRecord, context: MutationContext) -> None:
        for listener in self._listeners:
            await listener.on_entity_deleted(record, context)

    # -- ngsi-sources ---------------------------------------------------------

    @abstractmethod
    async def get_source(self, source_id: str) -> Source | None: ...

    @abstractmethod
    async def list_sources(self) -> list[Source]: ...

    @abstractmethod
    async def create_source(self, source: Source) -> Source:
        """Persist a source; an empty ``source.id`` gets a generated one."""
        ...

    # -- ngsi-data-models -----------------------------------------------------

    @abstractmethod
    async def get_data_model(self, model_id: str) -> DataModel | None: ...

    @abstractmethod
    async def find_data_model(self, names: Sequence[str]) -> DataModel | None:
        """First data model whose ``model`` equals any of ``names``."""
        ...

    @abstractmethod
    async def create_data_model(
        self, model: str, context_url: str | None = None
    ) -> DataModel: ...

    # -- ngsi-entities --------------------------------------------------------

    @abstractmethod
    async def get_entity(self, record_id: str) -> EntityRecord | None: ...

    @abstractmethod
    async def find_entities(
        self,
        *,
        source_id: str | None = None,
        entity_id: str | None = None,
        limit: int | None = None,
    ) -> list[EntityRecord]: ...

    @abstractmethod
    async def create_entity(
        self,
        record: EntityRecord,
        *,
        context: MutationContext = MutationContext(),
    ) -> EntityRecord:
        """Persist a new record.

        Raises:
            DuplicateEntityError: If ``record.entity_id`` is already stored.
        """
        ...

    @abstractmethod
    async def update_entity(
        self,
        record_id: str,
        changes: Mapping[str, Any],
        *,
        context: MutationContext = MutationContext(),
    ) -> EntityRecord:
        """Apply ``changes`` (EntityRecord field names) to a stored record.

        Raises:
            EntityRecordNotFoundError: If no record has ``record_id``.
        """
        ...

    @abstractmethod
    async def delete_entity(
        self,
        record_id: str,
        *,
        context: MutationContext = MutationContext(),
    ) -> EntityRecord | None: ...
