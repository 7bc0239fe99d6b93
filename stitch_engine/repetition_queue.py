"""
Position-based repetition queue ("stitch queue").

Each (user, learning path) owns an ordered queue whose positions are always
the contiguous set 1..N. The stitch at position 1 is what the learner sees
next. Completing a stitch moves it back to an absolute depth (the skip
number) and the stitches it jumped over each move one place forward, so a
different stitch reaches the front.

Repositioning is transactional: the new queue is built on a copy, checked
for contiguity and only then written to the store.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime

from loguru import logger

from stitch_engine.errors import (
    InvalidInputError,
    InvalidPosition,
    LearningPathNotFound,
    NoStitchesAvailable,
    RepositioningFailed,
    StitchNotFound,
    UserNotFound,
)
from stitch_engine.models import (
    PathState,
    PerformanceData,
    QueuedStitch,
    RepositionResult,
    Stitch,
    utc_now,
    validate_performance,
)
from stitch_engine.skip_number import SkipNumberCalculator
from stitch_engine.storage.base import QueueStore
from stitch_engine.storage.memory import InMemoryQueueStore


def _as_stitch(item: Stitch | str) -> Stitch:
    return item if isinstance(item, Stitch) else Stitch(stitch_id=str(item))


def renumber(entries: list[QueuedStitch]) -> list[QueuedStitch]:
    """Assign positions 1..N in list order."""
    return [
        QueuedStitch(stitch_id=e.stitch_id, position=index, content=e.content)
        for index, e in enumerate(entries, start=1)
    ]


class RepetitionQueue:
    """
    Spaced repetition over position-ordered stitch queues.

    Args:
        store: QueueStore holding path state (in-memory if None)
        calculator: SkipNumberCalculator (default config if None)
        minimum_displacement: Smallest insertion depth for queues of 2+
            stitches, so a completed stitch never stays at the head
        clock: Source of "now" for history timestamps
    """

    def __init__(
        self,
        store: QueueStore | None = None,
        calculator: SkipNumberCalculator | None = None,
        minimum_displacement: int = 2,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store or InMemoryQueueStore()
        self.calculator = calculator or SkipNumberCalculator()
        self.minimum_displacement = max(1, minimum_displacement)
        self.clock = clock

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def initialize(
        self,
        user_id: str,
        path_id: str,
        stitches: Iterable[Stitch | str],
    ) -> list[QueuedStitch]:
        """
        Create (or reset) a learning path with sequential positions.

        Any existing queue for the key is replaced. Repositioning history is
        an audit trail and is kept.

        Returns:
            The new queue, ordered by position
        """
        items = [_as_stitch(item) for item in stitches]
        ids = [item.stitch_id for item in items]
        if len(ids) != len(set(ids)):
            raise InvalidInputError(f"Duplicate stitch ids in learning path {path_id}")

        existing = self.store.get_path(user_id, path_id)
        state = PathState(
            entries=[
                QueuedStitch(stitch_id=item.stitch_id, position=index, content=dict(item.content))
                for index, item in enumerate(items, start=1)
            ],
            history=existing.history if existing else {},
        )
        self.store.put_path(user_id, path_id, state)

        logger.info(f"Initialised path {path_id} for {user_id} with {len(items)} stitches")
        return state.ordered()

    def add_stitch(
        self,
        user_id: str,
        path_id: str,
        stitch: Stitch | str,
        position: int | None = None,
    ) -> QueuedStitch:
        """
        Insert a stitch into a path.

        Args:
            position: 1-based slot; occupants at or after it move back one.
                None (or anything past the end) appends.

        Raises:
            InvalidPosition: position < 1
            InvalidInputError: stitch id already queued in this path
        """
        item = _as_stitch(stitch)
        state = self.store.get_path(user_id, path_id) or PathState()

        if state.find(item.stitch_id) is not None:
            raise InvalidInputError(f"Stitch {item.stitch_id} is already queued in {path_id}")
        if position is not None and position < 1:
            raise InvalidPosition(f"Position must be >= 1, got {position}")

        ordered = state.ordered()
        index = len(ordered) if position is None else min(position - 1, len(ordered))
        ordered.insert(index, QueuedStitch(item.stitch_id, 0, dict(item.content)))
        state.entries = renumber(ordered)
        self.store.put_path(user_id, path_id, state)

        logger.debug(f"Added {item.stitch_id} to {path_id} at position {index + 1}")
        return state.entries[index]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_path(self, user_id: str, path_id: str) -> bool:
        return self.store.get_path(user_id, path_id) is not None

    def queue_length(self, user_id: str, path_id: str) -> int:
        return len(self._load(user_id, path_id))

    def get_next(self, user_id: str, path_id: str) -> QueuedStitch:
        """
        Return the stitch at position 1.

        Raises:
            UserNotFound / LearningPathNotFound: unknown key
            NoStitchesAvailable: empty queue
        """
        state = self._load(user_id, path_id)
        if not state.entries:
            raise NoStitchesAvailable(user_id, path_id)

        head = next((e for e in state.entries if e.position == 1), None)
        if head is None:
            head = min(state.entries, key=lambda e: e.position)
            logger.warning(
                f"No stitch at position 1 in {path_id} for {user_id}; "
                f"falling back to position {head.position}"
            )
        return head

    def get_queue(self, user_id: str, path_id: str) -> list[dict]:
        """Snapshot of the queue as [{id, position}] ascending by position."""
        state = self._load(user_id, path_id)
        return [entry.to_summary() for entry in state.ordered()]

    def get_history(
        self,
        user_id: str,
        stitch_id: str,
        limit: int | None = None,
    ) -> list[RepositionResult]:
        """
        Repositioning history for a stitch, most recent first.

        Raises:
            InvalidInputError: negative limit
            UserNotFound: no paths for the user
            StitchNotFound: the stitch is neither queued nor has history
        """
        if limit is not None and limit < 0:
            raise InvalidInputError(f"History limit must be >= 0, got {limit}")
        if not self.store.has_user(user_id):
            raise UserNotFound(user_id)

        for path_id in self.store.list_paths(user_id):
            state = self.store.get_path(user_id, path_id)
            if state is None:
                continue
            if stitch_id in state.history or state.find(stitch_id) is not None:
                history = state.history.get(stitch_id, [])
                return history[:limit] if limit is not None else list(history)

        raise StitchNotFound(user_id, stitch_id)

    # ------------------------------------------------------------------
    # Repositioning
    # ------------------------------------------------------------------

    def reposition(
        self,
        user_id: str,
        stitch_id: str,
        performance: PerformanceData,
        path_id: str | None = None,
    ) -> RepositionResult:
        """
        Move a completed stitch back in its queue by its skip number.

        Algorithm:
        1. Validate performance (nothing is touched on failure)
        2. Locate the stitch and its current position
        3. Skip number from performance, history and queue length
        4. Remove the stitch; the stitches it passes move forward one place
        5. Reinsert it at position = skip number (absolute depth)
        6. Prepend a RepositionResult to its history

        Args:
            path_id: Restrict the search to one learning path

        Raises:
            InvalidPerformanceData: bad performance ranges
            UserNotFound / StitchNotFound: unknown key
            RepositioningFailed: the computed queue broke the position invariant
        """
        validate_performance(performance)

        if not self.store.has_user(user_id):
            raise UserNotFound(user_id)

        path_id, state = self._locate(user_id, stitch_id, path_id)
        entry = state.find(stitch_id)
        previous_position = entry.position
        history = state.history.get(stitch_id, [])
        queue_length = len(state)

        skip_number = self.calculator.calculate(performance, history, queue_length=queue_length)
        if queue_length >= 2:
            skip_number = max(skip_number, min(self.minimum_displacement, queue_length))

        ordered = [e for e in state.ordered() if e.stitch_id != stitch_id]
        if len(ordered) != queue_length - 1:
            self._fail(user_id, path_id, f"stitch {stitch_id} appears more than once")
        ordered.insert(skip_number - 1, entry)
        new_entries = renumber(ordered)

        candidate = PathState(entries=new_entries, history=dict(state.history))
        if not candidate.is_contiguous() or candidate.find(stitch_id).position != skip_number:
            self._fail(user_id, path_id, f"positions not contiguous after moving {stitch_id}")

        timestamp = getattr(performance, "completed_at", None) or self.clock()
        result = RepositionResult(
            stitch_id=stitch_id,
            previous_position=previous_position,
            new_position=skip_number,
            skip_number=skip_number,
            timestamp=timestamp,
        )
        candidate.history[stitch_id] = [result, *history]
        self.store.put_path(user_id, path_id, candidate)

        logger.debug(
            f"Repositioned {stitch_id} in {path_id}: {previous_position} -> {skip_number} "
            f"(queue of {queue_length})"
        )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, user_id: str, path_id: str) -> PathState:
        if not self.store.has_user(user_id):
            raise UserNotFound(user_id)
        state = self.store.get_path(user_id, path_id)
        if state is None:
            raise LearningPathNotFound(user_id, path_id)
        return state

    def _locate(
        self,
        user_id: str,
        stitch_id: str,
        path_hint: str | None,
    ) -> tuple[str, PathState]:
        candidates = [path_hint] if path_hint is not None else self.store.list_paths(user_id)
        for path_id in candidates:
            state = self.store.get_path(user_id, path_id)
            if state is not None and state.find(stitch_id) is not None:
                return path_id, state
        raise StitchNotFound(user_id, stitch_id)

    def _fail(self, user_id: str, path_id: str, reason: str) -> None:
        logger.error(f"Repositioning failed for {user_id}/{path_id}: {reason}")
        raise RepositioningFailed(f"Repositioning failed in {path_id}: {reason}")
