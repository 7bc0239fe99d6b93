"""
Three-tube rotation ("triple helix").

Each user owns three tubes. Every tube is an independent RepetitionQueue with
its own SkipNumberCalculator, so spacing and mastery never cross tubes. At
any moment exactly one tube is LIVE (served to the learner), one is READY
(assembled and waiting) and one is PREPARING (being assembled in the
background).

Rotation after a completion cycle:

    LIVE      -> PREPARING
    next tube -> LIVE        (round-robin tube1 -> tube2 -> tube3 -> tube1)
    remaining -> READY
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger

from stitch_engine.errors import AlreadyInitialized, InvalidDifficulty, InvalidInputError, UserNotFound
from stitch_engine.models import (
    HelixState,
    PerformanceData,
    QueuedStitch,
    RepositionResult,
    Stitch,
    TubeId,
    TubeState,
    TubeStatus,
    TubeTransition,
    utc_now,
)
from stitch_engine.repetition_queue import RepetitionQueue
from stitch_engine.storage.base import HelixStore
from stitch_engine.storage.memory import InMemoryHelixStore

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5

INITIAL_STATUSES = {
    TubeId.TUBE1: TubeStatus.LIVE,
    TubeId.TUBE2: TubeStatus.READY,
    TubeId.TUBE3: TubeStatus.PREPARING,
}


def validate_difficulty(level: object) -> int:
    if isinstance(level, bool) or not isinstance(level, int):
        raise InvalidDifficulty(level)
    if not MIN_DIFFICULTY <= level <= MAX_DIFFICULTY:
        raise InvalidDifficulty(level)
    return level


@dataclass
class RotationResult:
    """Outcome of one rotation."""

    user_id: str
    previous_tube: TubeId
    active_tube: TubeId
    rotation_count: int
    timestamp: datetime
    transitions: list[TubeTransition] = field(default_factory=list)


class TubeRotationManager:
    """
    Owns the helix state and one RepetitionQueue per tube.

    Args:
        store: HelixStore for rotation state
        queue_factory: Builds the RepetitionQueue for a tube. Called once per
            tube; each call must return a queue with its own calculator.
        default_difficulty: Difficulty used when initialize() gets none
        clock: Source of "now"
    """

    def __init__(
        self,
        store: HelixStore | None = None,
        queue_factory: Callable[[TubeId], RepetitionQueue] | None = None,
        default_difficulty: int = 2,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store or InMemoryHelixStore()
        self.clock = clock
        self.default_difficulty = validate_difficulty(default_difficulty)
        factory = queue_factory or (lambda tube: RepetitionQueue(clock=clock))
        self._queues: dict[TubeId, RepetitionQueue] = {tube: factory(tube) for tube in TubeId}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(
        self,
        user_id: str,
        initial_difficulty: int | None = None,
        seeds: Mapping[TubeId | str, Iterable[Stitch | str]] | None = None,
        reset: bool = False,
    ) -> HelixState:
        """
        Set up the three tubes for a user with tube1 LIVE.

        Args:
            initial_difficulty: 1..5, applied to all three tubes
            seeds: Optional initial stitches per tube; unseeded tubes start empty
            reset: Re-initialise an existing user instead of raising

        Raises:
            AlreadyInitialized: the user has tubes and reset is False
            InvalidDifficulty: difficulty outside 1..5
            TubeNotFound: a seed key is not a tube
        """
        difficulty = validate_difficulty(
            self.default_difficulty if initial_difficulty is None else initial_difficulty
        )
        if not reset and self.store.get(user_id) is not None:
            raise AlreadyInitialized(user_id)

        seed_map = {TubeId.parse(key): list(value) for key, value in (seeds or {}).items()}
        now = self.clock()

        state = HelixState(
            user_id=user_id,
            active_tube=TubeId.TUBE1,
            tubes={
                tube: TubeState(
                    tube_id=tube,
                    status=INITIAL_STATUSES[tube],
                    difficulty=difficulty,
                    path_id=tube.value,
                    last_transition_time=now,
                )
                for tube in TubeId
            },
        )
        for tube in TubeId:
            self._queues[tube].initialize(user_id, tube.value, seed_map.get(tube, []))

        self.store.put(user_id, state)
        logger.info(f"Initialised tubes for {user_id} at difficulty {difficulty}")
        return state

    def is_initialized(self, user_id: str) -> bool:
        return self.store.get(user_id) is not None

    def get_state(self, user_id: str) -> HelixState:
        state = self.store.get(user_id)
        if state is None:
            raise UserNotFound(user_id)
        return state

    # ------------------------------------------------------------------
    # Active tube
    # ------------------------------------------------------------------

    def get_active(self, user_id: str) -> TubeId:
        return self.get_state(user_id).active_tube

    def get_active_stitch(self, user_id: str) -> tuple[TubeId, QueuedStitch]:
        """Head of the LIVE tube's queue."""
        state = self.get_state(user_id)
        tube = state.active_tube
        return tube, self._queues[tube].get_next(user_id, state.tubes[tube].path_id)

    def rotate(self, user_id: str, reason: str = "completion") -> RotationResult:
        """Promote the next tube to LIVE. See module docstring for transitions."""
        state = self.get_state(user_id)
        now = self.clock()

        previous = state.active_tube
        promoted = previous.next()
        remaining = promoted.next()
        targets = {
            previous: TubeStatus.PREPARING,
            promoted: TubeStatus.LIVE,
            remaining: TubeStatus.READY,
        }

        transitions = []
        for tube, target in targets.items():
            tube_state = state.tubes[tube]
            transitions.append(
                TubeTransition(
                    tube_id=tube,
                    from_status=tube_state.status,
                    to_status=target,
                    timestamp=now,
                    reason=reason,
                )
            )
            if tube_state.status != target:
                tube_state.status = target
                tube_state.last_transition_time = now

        state.active_tube = promoted
        state.rotation_count += 1
        state.last_rotation_time = now
        self.store.put(user_id, state)

        logger.info(
            f"Rotated tubes for {user_id}: {previous.value} -> {promoted.value} "
            f"(rotation {state.rotation_count}, {reason})"
        )
        return RotationResult(
            user_id=user_id,
            previous_tube=previous,
            active_tube=promoted,
            rotation_count=state.rotation_count,
            timestamp=now,
            transitions=transitions,
        )

    # ------------------------------------------------------------------
    # Per-tube operations
    # ------------------------------------------------------------------

    def update_difficulty(self, user_id: str, tube_id: TubeId | str, level: int) -> TubeState:
        tube = TubeId.parse(tube_id)
        level = validate_difficulty(level)
        state = self.get_state(user_id)
        state.tubes[tube].difficulty = level
        self.store.put(user_id, state)
        return state.tubes[tube]

    def mark_ready(self, user_id: str, tube_id: TubeId | str) -> TubeTransition | None:
        """
        Move a PREPARING tube to READY once its content is assembled.

        Returns None when the tube is already READY.

        Raises:
            InvalidInputError: the tube is LIVE
        """
        tube = TubeId.parse(tube_id)
        state = self.get_state(user_id)
        tube_state = state.tubes[tube]

        if tube_state.status is TubeStatus.LIVE:
            raise InvalidInputError(f"{tube.value} is live and cannot be marked ready")
        if tube_state.status is TubeStatus.READY:
            return None

        now = self.clock()
        tube_state.status = TubeStatus.READY
        tube_state.last_transition_time = now
        self.store.put(user_id, state)
        return TubeTransition(tube, TubeStatus.PREPARING, TubeStatus.READY, now, "prepared")

    def seed(self, user_id: str, tube_id: TubeId | str, stitches: Iterable[Stitch | str]) -> list[QueuedStitch]:
        """Replace a tube's queue with the given stitches."""
        tube = TubeId.parse(tube_id)
        state = self.get_state(user_id)
        return self._queues[tube].initialize(user_id, state.tubes[tube].path_id, stitches)

    def reposition(
        self,
        user_id: str,
        tube_id: TubeId | str,
        stitch_id: str,
        performance: PerformanceData,
    ) -> RepositionResult:
        tube = TubeId.parse(tube_id)
        state = self.get_state(user_id)
        return self._queues[tube].reposition(
            user_id, stitch_id, performance, path_id=state.tubes[tube].path_id
        )

    def get_queue(self, user_id: str, tube_id: TubeId | str) -> list[dict]:
        tube = TubeId.parse(tube_id)
        state = self.get_state(user_id)
        return self._queues[tube].get_queue(user_id, state.tubes[tube].path_id)

    def queue_for(self, tube_id: TubeId | str) -> RepetitionQueue:
        return self._queues[TubeId.parse(tube_id)]
