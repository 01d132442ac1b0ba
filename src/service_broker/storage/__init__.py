"""Record storage backends.

- RecordStore: abstract persistence boundary
- InMemoryRecordStore: dictionary-backed, for development and tests
- SqliteRecordStore: durable SQLite storage shared across processes
"""

from .base import RecordStore, next_version
from .memory import InMemoryRecordStore
from .sqlite import SqliteRecordStore

__all__ = ["InMemoryRecordStore", "RecordStore", "SqliteRecordStore", "next_version"]
