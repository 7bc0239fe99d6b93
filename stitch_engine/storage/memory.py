"""In-memory repository implementations used by tests and the simulator."""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterator
from typing import TYPE_CHECKING

from stitch_engine.models import HelixState, PathState
from stitch_engine.storage.base import CacheStore, HelixStore, QueueStore

if TYPE_CHECKING:
    from stitch_engine.cache import LiveAidCacheState


class InMemoryQueueStore(QueueStore):
    """Dictionary-backed queue store. Deep-copies on every read and write."""

    def __init__(self) -> None:
        self._paths: dict[str, dict[str, PathState]] = {}
        self._lock = threading.Lock()

    def has_user(self, user_id: str) -> bool:
        with self._lock:
            return bool(self._paths.get(user_id))

    def list_paths(self, user_id: str) -> list[str]:
        with self._lock:
            return list(self._paths.get(user_id, {}))

    def get_path(self, user_id: str, path_id: str) -> PathState | None:
        with self._lock:
            state = self._paths.get(user_id, {}).get(path_id)
            return copy.deepcopy(state) if state is not None else None

    def put_path(self, user_id: str, path_id: str, state: PathState) -> None:
        snapshot = copy.deepcopy(state)
        with self._lock:
            self._paths.setdefault(user_id, {})[path_id] = snapshot


class InMemoryHelixStore(HelixStore):
    def __init__(self) -> None:
        self._states: dict[str, HelixState] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> HelixState | None:
        with self._lock:
            state = self._states.get(user_id)
            return copy.deepcopy(state) if state is not None else None

    def put(self, user_id: str, state: HelixState) -> None:
        snapshot = copy.deepcopy(state)
        with self._lock:
            self._states[user_id] = snapshot


class InMemoryCacheStore(CacheStore):
    def __init__(self) -> None:
        self._states: dict[str, LiveAidCacheState] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> LiveAidCacheState | None:
        with self._lock:
            state = self._states.get(user_id)
            return copy.deepcopy(state) if state is not None else None

    def put(self, user_id: str, state: LiveAidCacheState) -> None:
        snapshot = copy.deepcopy(state)
        with self._lock:
            self._states[user_id] = snapshot

    def delete(self, user_id: str) -> bool:
        with self._lock:
            return self._states.pop(user_id, None) is not None

    def iter_states(self) -> Iterator[LiveAidCacheState]:
        with self._lock:
            snapshot = [copy.deepcopy(state) for state in self._states.values()]
        return iter(snapshot)


__all__ = ["InMemoryQueueStore", "InMemoryHelixStore", "InMemoryCacheStore"]
