"""
Skip Number Calculator.

Maps a completion's performance to the queue depth at which the stitch is
reinserted. Two terms combine:

1. Performance band - correctness ratio scaled by a response-time factor
2. Momentum - when history exists, the previous skip number is grown or
   shrunk by a trend multiplier instead of starting over

Sustained mastery therefore spaces a stitch further and further back
(expanding intervals), a lapse pulls it forward quickly, and the queue length
caps the growth.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from loguru import logger

from stitch_engine.models import PerformanceData, RepositionResult, validate_performance

# (minimum correctness ratio, base skip) - checked top to bottom
DEFAULT_BANDS: tuple[tuple[float, float], ...] = (
    (1.0, 5.0),
    (0.9, 3.0),
    (0.8, 2.0),
    (0.7, 1.5),
    (0.6, 1.0),
)

# (minimum correctness ratio, multiplier applied to the previous skip number)
DEFAULT_HISTORY_MULTIPLIERS: tuple[tuple[float, float], ...] = (
    (1.0, 1.2),
    (0.9, 1.1),
    (0.8, 1.0),
    (0.7, 0.9),
)


@dataclass(frozen=True)
class SkipConfig:
    """Tunable constants for skip number calculation."""

    expected_response_ms: float = 3000.0
    min_response_factor: float = 0.5
    max_response_factor: float = 1.5
    bands: tuple[tuple[float, float], ...] = DEFAULT_BANDS
    fallback_base: float = 0.5
    history_multipliers: tuple[tuple[float, float], ...] = DEFAULT_HISTORY_MULTIPLIERS
    fallback_multiplier: float = 0.7


def round_half_up(value: float) -> int:
    """Round to nearest integer with .5 going up (2.5 -> 3)."""
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


class SkipNumberCalculator:
    """
    Pure skip number calculation.

    Instances hold only configuration, so one calculator per tube keeps
    spacing independent without any shared mutable state.
    """

    def __init__(self, config: SkipConfig | None = None):
        self.config = config or SkipConfig()

    def response_time_factor(self, average_response_time: float) -> float:
        """Faster than expected gives a factor above 1, clamped to the configured range."""
        raw = self.config.expected_response_ms / average_response_time
        return min(self.config.max_response_factor, max(self.config.min_response_factor, raw))

    def band_base(self, ratio: float) -> float:
        for threshold, base in self.config.bands:
            if ratio >= threshold:
                return base
        return self.config.fallback_base

    def history_multiplier(self, ratio: float) -> float:
        for threshold, multiplier in self.config.history_multipliers:
            if ratio >= threshold:
                return multiplier
        return self.config.fallback_multiplier

    def calculate(
        self,
        performance: PerformanceData,
        history: Sequence[RepositionResult] | None = None,
        queue_length: int | None = None,
    ) -> int:
        """
        Calculate the skip number for a completion.

        Args:
            performance: PerformanceData (or compatible object) for the completion
            history: Prior repositions of this stitch, most recent first
            queue_length: Current queue size; caps the result when given

        Returns:
            Integer skip number >= 1 (and <= queue_length when supplied)

        Raises:
            InvalidPerformanceData: if the performance data is out of range
        """
        validate_performance(performance)

        ratio = performance.correct_count / performance.total_count

        if history:
            last_skip = history[0].skip_number
            multiplier = self.history_multiplier(ratio)
            base = max(1.0, last_skip * multiplier)
            logger.debug(
                f"Skip from history: last={last_skip} x{multiplier} (ratio {ratio:.2f})"
            )
        else:
            factor = self.response_time_factor(performance.average_response_time)
            base = self.band_base(ratio) * factor
            logger.debug(f"Skip from band: ratio {ratio:.2f}, speed factor {factor:.2f}")

        skip = max(1, round_half_up(base))
        if queue_length is not None and queue_length >= 1:
            skip = min(skip, queue_length)

        return skip
