"""
Local error taxonomy.

Broker-side failures live in ``citydash.core.ngsi.transport`` (``NgsiError``
and subclasses); the classes here cover configuration problems and local
store invariants, raised before any network I/O happens.
"""
from __future__ import annotations


class CitydashError(Exception):
    pass


class ConfigurationError(CitydashError):
    """Missing broker URL, entity id, source, or an empty request."""


class NotFound(CitydashError):
    pass


class SourceNotFoundError(NotFound):
    def __init__(self, source_id: str) -> None:
        self.source_id = source_id
        super().__init__("Source not found")


class EntityRecordNotFoundError(NotFound):
    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__("Entity not found")


class DuplicateEntityError(CitydashError):
    """An entity with this NGSI-LD id is already stored locally."""

    def __init__(self, entity_id: str) -> None:
        self.entity_id = entity_id
        super().__init__("Entity already exists")
