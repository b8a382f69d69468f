"""HTTP surface of the sync service."""
