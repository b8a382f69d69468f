"""Local persistence for sources, data models and entity records."""

from citydash.core.store.sql import SqlStore

__all__ = ["SqlStore"]
