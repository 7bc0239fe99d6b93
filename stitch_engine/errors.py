"""
Exception taxonomy for the stitch scheduling engine.

Four families, each with a different contract for the caller:

- NotFoundError: caller referenced an uninitialised key. Never retried.
- InvalidInputError: rejected before any state is touched.
- CacheStateError: expected signal to fall back to on-demand assembly.
- InternalConsistencyError: invariant violation. Logged loudly, never retried.
"""

from __future__ import annotations


class StitchEngineError(Exception):
    """Base class for all engine errors."""

    code = "STITCH_ENGINE_ERROR"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)


# =============================================================================
# Not Found
# =============================================================================


class NotFoundError(StitchEngineError):
    code = "NOT_FOUND"


class UserNotFound(NotFoundError):
    code = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class LearningPathNotFound(NotFoundError):
    code = "LEARNING_PATH_NOT_FOUND"

    def __init__(self, user_id: str, path_id: str):
        self.user_id = user_id
        self.path_id = path_id
        super().__init__(f"Learning path not found: {path_id} for user: {user_id}")


class StitchNotFound(NotFoundError):
    code = "STITCH_NOT_FOUND"

    def __init__(self, user_id: str, stitch_id: str):
        self.user_id = user_id
        self.stitch_id = stitch_id
        super().__init__(f"Stitch not found: {stitch_id} for user: {user_id}")


class TubeNotFound(NotFoundError):
    code = "TUBE_NOT_FOUND"

    def __init__(self, tube_id: object):
        self.tube_id = tube_id
        super().__init__(f"Unknown tube: {tube_id!r}")


class NoStitchesAvailable(StitchEngineError):
    """The learning path exists but its queue is empty."""

    code = "NO_STITCHES_AVAILABLE"

    def __init__(self, user_id: str, path_id: str):
        self.user_id = user_id
        self.path_id = path_id
        super().__init__(f"No stitches available in {path_id} for user: {user_id}")


# =============================================================================
# Validation
# =============================================================================


class InvalidInputError(StitchEngineError):
    code = "INVALID_INPUT"


class InvalidPerformanceData(InvalidInputError):
    code = "INVALID_PERFORMANCE_DATA"


class InvalidSessionResults(InvalidInputError):
    code = "INVALID_SESSION_RESULTS"


class InvalidDifficulty(InvalidInputError):
    code = "INVALID_DIFFICULTY"

    def __init__(self, difficulty: object):
        self.difficulty = difficulty
        super().__init__(f"Invalid difficulty level: {difficulty}. Must be between 1 and 5.")


class InvalidPosition(InvalidInputError):
    code = "INVALID_POSITION"


class AlreadyInitialized(InvalidInputError):
    code = "ALREADY_INITIALIZED"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Tubes already initialised for user: {user_id}")


# =============================================================================
# Cache State
# =============================================================================


class CacheStateError(StitchEngineError):
    code = "CACHE_STATE"


class CacheMiss(CacheStateError):
    code = "CACHE_MISS"


class CacheExpired(CacheStateError):
    code = "CACHE_EXPIRED"


class StitchNotReady(CacheStateError):
    code = "STITCH_NOT_READY"


class PreparationFailed(CacheStateError):
    """Background assembly could not build a ReadyStitch."""

    code = "PREPARATION_FAILED"


# =============================================================================
# Internal Consistency
# =============================================================================


class InternalConsistencyError(StitchEngineError):
    code = "INTERNAL_CONSISTENCY"


class RepositioningFailed(InternalConsistencyError):
    code = "REPOSITIONING_FAILED"
