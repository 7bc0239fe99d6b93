"""
Repository interfaces for scheduler state.

The scheduler classes only talk to these interfaces, so the same algorithm
runs against the in-memory stores in tests and the SQL stores in production.
Implementations must hand out copies: a caller mutating what it read must
not affect stored state until it calls put.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import TYPE_CHECKING

from stitch_engine.models import HelixState, PathState

if TYPE_CHECKING:
    from stitch_engine.cache import LiveAidCacheState


class QueueStore(ABC):
    """Persist learning path queues and their repositioning history."""

    @abstractmethod
    def has_user(self, user_id: str) -> bool:
        """Return True if any learning path exists for the user."""

    @abstractmethod
    def list_paths(self, user_id: str) -> list[str]:
        """Return the user's learning path ids in creation order."""

    @abstractmethod
    def get_path(self, user_id: str, path_id: str) -> PathState | None:
        """Return a copy of the stored path state, if present."""

    @abstractmethod
    def put_path(self, user_id: str, path_id: str, state: PathState) -> None:
        """Atomically replace the stored path state."""


class HelixStore(ABC):
    """Persist the three-tube rotation state per user."""

    @abstractmethod
    def get(self, user_id: str) -> HelixState | None:
        """Return a copy of the user's helix state, if present."""

    @abstractmethod
    def put(self, user_id: str, state: HelixState) -> None:
        """Replace the user's helix state."""


class CacheStore(ABC):
    """Hold per-user readiness cache state. Contents are disposable."""

    @abstractmethod
    def get(self, user_id: str) -> LiveAidCacheState | None:
        """Return a copy of the user's cache state, if present."""

    @abstractmethod
    def put(self, user_id: str, state: LiveAidCacheState) -> None:
        """Replace the user's cache state."""

    @abstractmethod
    def delete(self, user_id: str) -> bool:
        """Drop the user's cache state. Returns True if something was removed."""

    @abstractmethod
    def iter_states(self) -> Iterator[LiveAidCacheState]:
        """Iterate over copies of every stored cache state."""


__all__ = ["QueueStore", "HelixStore", "CacheStore"]
