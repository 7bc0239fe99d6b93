"""
Domain records shared by the queue, tube and storage layers.

- Stitch / QueuedStitch: content units and their queue positions
- PerformanceData / QuestionResult: completion signal from the session layer
- RepositionResult: append-only audit trail of queue moves
- PathState: one learning path's queue plus per-stitch history
- TubeId / TubeStatus / TubeState / HelixState: the three-tube rotation model
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from stitch_engine.errors import InvalidPerformanceData, InvalidSessionResults, TubeNotFound


def utc_now() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Stitches
# =============================================================================


@dataclass(frozen=True)
class Stitch:
    """A unit of learning content as supplied by the content collaborator."""

    stitch_id: str
    content: dict[str, Any] = field(default_factory=dict)


@dataclass
class QueuedStitch:
    """A stitch at a specific position (1-based) within one queue."""

    stitch_id: str
    position: int
    content: dict[str, Any] = field(default_factory=dict)

    def to_summary(self) -> dict[str, Any]:
        return {"id": self.stitch_id, "position": self.position}


# =============================================================================
# Performance
# =============================================================================


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_performance(performance: object) -> None:
    """
    Check the PerformanceData ranges.

    Works on any object exposing the three attributes so payloads that never
    went through the PerformanceData constructor are rejected too.

    Raises:
        InvalidPerformanceData: on missing fields or out-of-range values
    """
    if performance is None:
        raise InvalidPerformanceData("Performance data is required")

    correct = getattr(performance, "correct_count", None)
    total = getattr(performance, "total_count", None)
    avg_ms = getattr(performance, "average_response_time", None)

    if not (_is_number(correct) and _is_number(total)):
        raise InvalidPerformanceData("correct_count and total_count must be numbers")
    if total <= 0:
        raise InvalidPerformanceData(f"total_count must be positive, got {total}")
    if correct < 0 or correct > total:
        raise InvalidPerformanceData(
            f"correct_count must be within 0..{total}, got {correct}"
        )
    if not _is_number(avg_ms) or not math.isfinite(avg_ms) or avg_ms <= 0:
        raise InvalidPerformanceData(
            f"average_response_time must be a positive number, got {avg_ms!r}"
        )


@dataclass(frozen=True)
class QuestionResult:
    """Outcome of a single answered question."""

    correct: bool
    response_ms: float


@dataclass(frozen=True)
class PerformanceData:
    """Correctness and timing for one completed stitch."""

    correct_count: int
    total_count: int
    average_response_time: float  # milliseconds
    completed_at: datetime | None = None

    def __post_init__(self):
        validate_performance(self)

    @property
    def correctness_ratio(self) -> float:
        return self.correct_count / self.total_count

    @property
    def is_perfect(self) -> bool:
        return self.correct_count == self.total_count

    @classmethod
    def from_session_results(
        cls,
        results: Sequence[QuestionResult],
        completed_at: datetime | None = None,
    ) -> PerformanceData:
        """
        Fold per-question results into a PerformanceData record.

        Args:
            results: Answered questions for one stitch
            completed_at: Completion time (None means "now" at reposition time)

        Raises:
            InvalidSessionResults: if the batch is empty or has bad timings
        """
        if not results:
            raise InvalidSessionResults("Session results must contain at least one answer")

        timings = []
        for result in results:
            response_ms = getattr(result, "response_ms", None)
            if not _is_number(response_ms) or response_ms <= 0:
                raise InvalidSessionResults(
                    f"Every answer needs a positive response time, got {response_ms!r}"
                )
            timings.append(float(response_ms))

        return cls(
            correct_count=sum(1 for r in results if r.correct),
            total_count=len(results),
            average_response_time=sum(timings) / len(timings),
            completed_at=completed_at,
        )


@dataclass(frozen=True)
class RepositionResult:
    """One entry in a stitch's repositioning history."""

    stitch_id: str
    previous_position: int
    new_position: int
    skip_number: int
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "stitch_id": self.stitch_id,
            "previous_position": self.previous_position,
            "new_position": self.new_position,
            "skip_number": self.skip_number,
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# Path State
# =============================================================================


@dataclass
class PathState:
    """Queue and history for one (user, learning path)."""

    entries: list[QueuedStitch] = field(default_factory=list)
    history: dict[str, list[RepositionResult]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.entries)

    def ordered(self) -> list[QueuedStitch]:
        return sorted(self.entries, key=lambda e: e.position)

    def find(self, stitch_id: str) -> QueuedStitch | None:
        for entry in self.entries:
            if entry.stitch_id == stitch_id:
                return entry
        return None

    def is_contiguous(self) -> bool:
        """True when positions are exactly {1..N} with no duplicates."""
        return sorted(e.position for e in self.entries) == list(range(1, len(self.entries) + 1))


# =============================================================================
# Tubes
# =============================================================================


class TubeId(str, Enum):
    """The three parallel tubes, rotated round-robin."""

    TUBE1 = "tube1"
    TUBE2 = "tube2"
    TUBE3 = "tube3"

    def next(self) -> TubeId:
        order = list(TubeId)
        return order[(order.index(self) + 1) % len(order)]

    @classmethod
    def parse(cls, value: TubeId | str) -> TubeId:
        try:
            return cls(value)
        except ValueError:
            raise TubeNotFound(value) from None


class TubeStatus(str, Enum):
    PREPARING = "preparing"
    READY = "ready"
    LIVE = "live"


@dataclass
class TubeState:
    tube_id: TubeId
    status: TubeStatus
    difficulty: int
    path_id: str
    last_transition_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tube_id": self.tube_id.value,
            "status": self.status.value,
            "difficulty": self.difficulty,
            "path_id": self.path_id,
            "last_transition_time": (
                self.last_transition_time.isoformat() if self.last_transition_time else None
            ),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> TubeState:
        last = payload.get("last_transition_time")
        return cls(
            tube_id=TubeId(payload["tube_id"]),
            status=TubeStatus(payload["status"]),
            difficulty=int(payload["difficulty"]),
            path_id=payload["path_id"],
            last_transition_time=datetime.fromisoformat(last) if last else None,
        )


@dataclass(frozen=True)
class TubeTransition:
    tube_id: TubeId
    from_status: TubeStatus
    to_status: TubeStatus
    timestamp: datetime
    reason: str


@dataclass
class HelixState:
    """Rotation state of a user's three tubes."""

    user_id: str
    active_tube: TubeId
    tubes: dict[TubeId, TubeState]
    rotation_count: int = 0
    last_rotation_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "active_tube": self.active_tube.value,
            "tubes": {tube.value: state.to_dict() for tube, state in self.tubes.items()},
            "rotation_count": self.rotation_count,
            "last_rotation_time": (
                self.last_rotation_time.isoformat() if self.last_rotation_time else None
            ),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> HelixState:
        last = payload.get("last_rotation_time")
        return cls(
            user_id=payload["user_id"],
            active_tube=TubeId(payload["active_tube"]),
            tubes={
                TubeId(key): TubeState.from_dict(value)
                for key, value in payload["tubes"].items()
            },
            rotation_count=int(payload.get("rotation_count", 0)),
            last_rotation_time=datetime.fromisoformat(last) if last else None,
        )
