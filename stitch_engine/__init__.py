"""
Stitch Engine - position-based spaced repetition with three rotating tubes.

Components (leaves first):
- SkipNumberCalculator: performance -> reinsertion depth
- RepetitionQueue: per (user, path) queue with contiguous positions 1..N
- TubeRotationManager: three independent queues, one LIVE at a time
- ReadinessCache: pre-assembled stitches per tube with TTL and invalidation
- StitchEngine: facade wiring the above with per-user locking
"""

from stitch_engine.cache import (
    CacheTTL,
    InvalidationCriteria,
    ReadinessCache,
    ReadyQuestion,
    ReadyStitch,
    StitchMetadata,
)
from stitch_engine.config import Settings, get_settings
from stitch_engine.engine import CompletionOutcome, StitchEngine
from stitch_engine.errors import StitchEngineError
from stitch_engine.models import (
    PerformanceData,
    QuestionResult,
    RepositionResult,
    Stitch,
    TubeId,
    TubeStatus,
)
from stitch_engine.repetition_queue import RepetitionQueue
from stitch_engine.skip_number import SkipConfig, SkipNumberCalculator
from stitch_engine.tubes import RotationResult, TubeRotationManager

__version__ = "0.1.0"

__all__ = [
    "CacheTTL",
    "CompletionOutcome",
    "InvalidationCriteria",
    "PerformanceData",
    "QuestionResult",
    "ReadinessCache",
    "ReadyQuestion",
    "ReadyStitch",
    "RepetitionQueue",
    "RepositionResult",
    "RotationResult",
    "Settings",
    "SkipConfig",
    "SkipNumberCalculator",
    "Stitch",
    "StitchEngine",
    "StitchEngineError",
    "StitchMetadata",
    "TubeId",
    "TubeRotationManager",
    "TubeStatus",
    "get_settings",
]
