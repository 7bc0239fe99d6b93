"""Storage backends for scheduler state."""

from stitch_engine.storage.base import CacheStore, HelixStore, QueueStore
from stitch_engine.storage.memory import InMemoryCacheStore, InMemoryHelixStore, InMemoryQueueStore
from stitch_engine.storage.sql import SqlHelixStore, SqlQueueStore

__all__ = [
    "CacheStore",
    "HelixStore",
    "QueueStore",
    "InMemoryCacheStore",
    "InMemoryHelixStore",
    "InMemoryQueueStore",
    "SqlHelixStore",
    "SqlQueueStore",
]
