"""
Readiness cache for pre-assembled stitches.

Holds at most one fully assembled ReadyStitch per (user, tube) so the next
tube can be served without waiting for assembly. Cache state is derived from
the queues and is disposable: losing it costs latency, never correctness.
Ordering decisions never consult it.

Lifetime of an entry:

    begin_preparation -> update_progress ... -> complete_preparation -> get
                                            \\-> abandon_preparation

Every invalidation gives the affected tubes a new generation number. A
preparation token remembers the generation it started under, so a stale
assembly finishing after an invalidation is discarded instead of cached.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger
from pydantic import BaseModel, Field

from stitch_engine.errors import CacheExpired, CacheMiss, StitchNotReady, UserNotFound
from stitch_engine.models import TubeId, utc_now
from stitch_engine.storage.base import CacheStore
from stitch_engine.storage.memory import InMemoryCacheStore


@dataclass(frozen=True)
class CacheTTL:
    """Cache lifetime: base x (1 + boundary_level x level_factor)."""

    base: timedelta = timedelta(hours=24)
    level_factor: float = 0.2
    base_preparation: timedelta = timedelta(milliseconds=2000)

    def for_level(self, boundary_level: int) -> timedelta:
        return self.base * (1 + boundary_level * self.level_factor)


# =============================================================================
# Cached content
# =============================================================================


class QuestionMetadata(BaseModel):
    concept_code: str = ""
    fact_id: str = ""
    boundary_level: int = Field(default=1, ge=1, le=5)
    question_format: str = ""
    assembly_timestamp: datetime | None = None


class ReadyQuestion(BaseModel):
    """A fully assembled question: prompt, answer and one distractor."""

    question_id: str = ""
    question_text: str = ""
    correct_answer: str = ""
    distractor: str = ""
    metadata: QuestionMetadata = Field(default_factory=QuestionMetadata)

    @property
    def is_complete(self) -> bool:
        return all((self.question_id, self.question_text, self.correct_answer, self.distractor))


class StitchMetadata(BaseModel):
    user_id: str
    concept_name: str = ""
    boundary_level: int = Field(default=1, ge=1, le=5)
    total_questions: int = 0
    preparation_timestamp: datetime | None = None
    is_shuffled: bool = False
    is_surprise: bool = False


class ReadyStitch(BaseModel):
    """Assembled questions for one stitch, ready to stream."""

    stitch_id: str
    tube_id: TubeId
    questions: list[ReadyQuestion] = Field(default_factory=list)
    metadata: StitchMetadata

    @property
    def is_complete(self) -> bool:
        return bool(self.questions) and all(q.is_complete for q in self.questions)


# =============================================================================
# Cache state
# =============================================================================


class TubeCacheState(BaseModel):
    tube_id: TubeId
    ready_stitch: ReadyStitch | None = None
    preparing_stitch_id: str | None = None
    preparation_id: int | None = None
    preparation_progress: float = Field(default=0.0, ge=0.0, le=1.0)
    preparation_started: datetime | None = None
    last_cache_time: datetime | None = None
    cache_valid_until: datetime | None = None
    generation: int = 0


class LiveAidCacheState(BaseModel):
    user_id: str
    tubes: dict[TubeId, TubeCacheState]
    active_tube_id: TubeId = TubeId.TUBE1
    last_rotation_time: datetime | None = None


class InvalidationCriteria(BaseModel):
    """
    Why the cache is being invalidated. Checked in this order:

    - boundary_level_changed: all three tubes
    - progression_milestone: the active tube only
    - force_refresh: all three tubes
    - completed_tube: that tube only (its head stitch changed)
    - max_cache_age: tubes that are expired or older than the given age
    """

    boundary_level_changed: bool = False
    progression_milestone: bool = False
    force_refresh: bool = False
    completed_tube: TubeId | None = None
    max_cache_age: timedelta | None = None


class InvalidationResult(BaseModel):
    invalidated_tubes: list[TubeId] = Field(default_factory=list)
    reason: str
    timestamp: datetime


class CacheWriteResult(BaseModel):
    cached: bool
    cache_timestamp: datetime
    valid_until: datetime


class Availability(BaseModel):
    is_ready: bool
    preparation_progress: float
    estimated_ready_time: datetime | None = None


class CacheMetrics(BaseModel):
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    preparations_started: int = 0
    preparations_completed: int = 0
    preparations_abandoned: int = 0
    stale_discards: int = 0
    preparation_success_rate: float = 0.0
    average_preparation_ms: float = 0.0
    users: int = 0
    cached_stitches: int = 0


@dataclass(frozen=True)
class PreparationToken:
    """Handle for one in-flight assembly of a stitch into a tube."""

    user_id: str
    tube_id: TubeId
    stitch_id: str
    generation: int
    preparation_id: int
    started_at: datetime


# =============================================================================
# Cache
# =============================================================================


class ReadinessCache:
    """
    Per-user, per-tube cache of ReadyStitch bundles.

    Args:
        store: CacheStore backend (in-memory if None)
        ttl: CacheTTL lifetime settings
        clock: Source of "now"
    """

    def __init__(
        self,
        store: CacheStore | None = None,
        ttl: CacheTTL | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store or InMemoryCacheStore()
        self.ttl = ttl or CacheTTL()
        self.clock = clock
        self._lock = threading.RLock()
        self._generations = itertools.count(1)
        self._preparation_ids = itertools.count(1)

        self._hits = 0
        self._misses = 0
        self._started = 0
        self._completed = 0
        self._abandoned = 0
        self._stale = 0
        self._preparation_ms_total = 0.0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, user_id: str, tube_id: TubeId | str) -> ReadyStitch:
        """
        Return a copy of the cached stitch for a tube.

        Raises:
            TubeNotFound: unknown tube id
            CacheMiss: nothing cached for the user or tube
            CacheExpired: cached stitch is past cache_valid_until
            StitchNotReady: preparation in flight, or a question is incomplete
        """
        tube = TubeId.parse(tube_id)
        state = self.store.get(user_id)

        with self._lock:
            try:
                ready = self._check_ready(user_id, tube, state)
            except (CacheMiss, CacheExpired, StitchNotReady) as e:
                self._misses += 1
                logger.debug(f"Cache {e.code} for {user_id}/{tube.value}")
                raise
            self._hits += 1

        return ready.model_copy(deep=True)

    def _check_ready(self, user_id: str, tube: TubeId, state: LiveAidCacheState | None) -> ReadyStitch:
        if state is None:
            raise CacheMiss(f"No cache state for user {user_id}")

        tube_state = state.tubes[tube]
        if tube_state.ready_stitch is None:
            if tube_state.preparing_stitch_id is not None:
                raise StitchNotReady(
                    f"{tube_state.preparing_stitch_id} is still being prepared "
                    f"({tube_state.preparation_progress:.0%})"
                )
            raise CacheMiss(f"No ready stitch cached for {user_id} in {tube.value}")

        if tube_state.cache_valid_until is None or self.clock() >= tube_state.cache_valid_until:
            raise CacheExpired(
                f"Cached stitch {tube_state.ready_stitch.stitch_id} for {user_id} "
                f"expired at {tube_state.cache_valid_until}"
            )

        if not tube_state.ready_stitch.is_complete:
            raise StitchNotReady(
                f"Cached stitch {tube_state.ready_stitch.stitch_id} has incomplete questions"
            )

        return tube_state.ready_stitch

    def check_availability(self, user_id: str, tube_id: TubeId | str) -> Availability:
        """Non-throwing readiness check for UI and backoff decisions."""
        tube = TubeId.parse(tube_id)
        state = self.store.get(user_id)
        now = self.clock()

        try:
            self._check_ready(user_id, tube, state)
        except (CacheMiss, CacheExpired, StitchNotReady):
            tube_state = state.tubes[tube] if state else None
            # expired or incomplete bundles start over
            if tube_state is None or tube_state.ready_stitch is not None:
                progress = 0.0
            else:
                progress = tube_state.preparation_progress
            remaining = self.ttl.base_preparation * (1.0 - progress)
            return Availability(
                is_ready=False,
                preparation_progress=progress,
                estimated_ready_time=now + remaining,
            )

        return Availability(is_ready=True, preparation_progress=1.0)

    def get_state(self, user_id: str) -> LiveAidCacheState:
        state = self.store.get(user_id)
        if state is None:
            raise UserNotFound(user_id)
        return state

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put(self, ready_stitch: ReadyStitch, tube_id: TubeId | str) -> CacheWriteResult:
        """
        Cache a ready stitch for a tube, replacing whatever was there.

        The stitch is stored as a private copy. cache_valid_until is always
        strictly after the write time.
        """
        tube = TubeId.parse(tube_id)
        user_id = ready_stitch.metadata.user_id
        now = self.clock()
        valid_until = now + self.ttl.for_level(ready_stitch.metadata.boundary_level)

        if not ready_stitch.is_complete:
            logger.warning(f"Caching incomplete stitch {ready_stitch.stitch_id} for {user_id}")

        with self._lock:
            state = self._load_or_create(user_id)
            previous = state.tubes[tube]
            state.tubes[tube] = TubeCacheState(
                tube_id=tube,
                ready_stitch=ready_stitch.model_copy(deep=True, update={"tube_id": tube}),
                preparation_progress=1.0,
                last_cache_time=now,
                cache_valid_until=valid_until,
                generation=previous.generation,
            )
            self.store.put(user_id, state)

        logger.info(f"Cached {ready_stitch.stitch_id} for {user_id}/{tube.value} until {valid_until}")
        return CacheWriteResult(cached=True, cache_timestamp=now, valid_until=valid_until)

    def invalidate(self, user_id: str, criteria: InvalidationCriteria) -> InvalidationResult:
        """
        Clear cached tubes according to criteria (see InvalidationCriteria).

        Invalidated tubes are reset to an empty state with a new generation,
        which also orphans any preparation in flight for them.
        """
        now = self.clock()

        with self._lock:
            state = self.store.get(user_id)
            if state is None:
                return InvalidationResult(reason="no cache state", timestamp=now)

            if criteria.boundary_level_changed:
                tubes, reason = list(TubeId), "boundary level changed"
            elif criteria.progression_milestone:
                tubes, reason = [state.active_tube_id], "progression milestone"
            elif criteria.force_refresh:
                tubes, reason = list(TubeId), "forced refresh"
            elif criteria.completed_tube is not None:
                tubes, reason = [criteria.completed_tube], "stitch completed"
            elif criteria.max_cache_age is not None:
                tubes = [
                    tube for tube in TubeId
                    if self._is_stale(state.tubes[tube], now, criteria.max_cache_age)
                ]
                reason = "max cache age exceeded"
            else:
                tubes, reason = [], "no criteria matched"

            for tube in tubes:
                state.tubes[tube] = TubeCacheState(tube_id=tube, generation=next(self._generations))
            self.store.put(user_id, state)

        if tubes:
            logger.info(
                f"Invalidated {', '.join(t.value for t in tubes)} for {user_id}: {reason}"
            )
        return InvalidationResult(invalidated_tubes=tubes, reason=reason, timestamp=now)

    @staticmethod
    def _is_stale(tube_state: TubeCacheState, now: datetime, max_age: timedelta) -> bool:
        if tube_state.ready_stitch is None:
            return False
        if tube_state.cache_valid_until is not None and now >= tube_state.cache_valid_until:
            return True
        return tube_state.last_cache_time is not None and now - tube_state.last_cache_time > max_age

    def set_active_tube(self, user_id: str, tube_id: TubeId | str) -> LiveAidCacheState:
        tube = TubeId.parse(tube_id)
        with self._lock:
            state = self._load_or_create(user_id)
            if state.active_tube_id != tube:
                state.active_tube_id = tube
                state.last_rotation_time = self.clock()
            self.store.put(user_id, state)
        return state

    def clear_user(self, user_id: str) -> bool:
        with self._lock:
            return self.store.delete(user_id)

    # ------------------------------------------------------------------
    # Background preparation
    # ------------------------------------------------------------------

    def begin_preparation(self, user_id: str, tube_id: TubeId | str, stitch_id: str) -> PreparationToken:
        """Mark a tube as assembling stitch_id and hand out a token for it."""
        tube = TubeId.parse(tube_id)
        now = self.clock()

        with self._lock:
            state = self._load_or_create(user_id)
            tube_state = state.tubes[tube]
            tube_state.preparing_stitch_id = stitch_id
            tube_state.preparation_id = next(self._preparation_ids)
            tube_state.preparation_progress = 0.0
            tube_state.preparation_started = now
            self.store.put(user_id, state)
            self._started += 1

        logger.debug(f"Preparing {stitch_id} for {user_id}/{tube.value}")
        return PreparationToken(
            user_id, tube, stitch_id, tube_state.generation, tube_state.preparation_id, now
        )

    def update_progress(self, token: PreparationToken, fraction: float) -> bool:
        """Record assembly progress. Returns False for a stale token."""
        with self._lock:
            state = self.store.get(token.user_id)
            if not self._is_current(state, token):
                return False
            state.tubes[token.tube_id].preparation_progress = min(1.0, max(0.0, float(fraction)))
            self.store.put(token.user_id, state)
        return True

    def complete_preparation(
        self,
        token: PreparationToken,
        ready_stitch: ReadyStitch,
    ) -> CacheWriteResult | None:
        """
        Cache the result of a preparation.

        Returns None (and caches nothing) when the tube was invalidated or
        re-prepared after the token was issued.
        """
        with self._lock:
            state = self.store.get(token.user_id)
            if not self._is_current(state, token):
                self._stale += 1
                logger.warning(
                    f"Discarding stale preparation of {token.stitch_id} "
                    f"for {token.user_id}/{token.tube_id.value}"
                )
                return None

            result = self.put(ready_stitch, token.tube_id)
            self._completed += 1
            elapsed = (result.cache_timestamp - token.started_at).total_seconds() * 1000
            self._preparation_ms_total += max(0.0, elapsed)
        return result

    def abandon_preparation(self, token: PreparationToken) -> None:
        with self._lock:
            self._abandoned += 1
            state = self.store.get(token.user_id)
            if not self._is_current(state, token):
                return
            tube_state = state.tubes[token.tube_id]
            tube_state.preparing_stitch_id = None
            tube_state.preparation_id = None
            tube_state.preparation_progress = 0.0
            tube_state.preparation_started = None
            self.store.put(token.user_id, state)

        logger.debug(f"Abandoned preparation of {token.stitch_id} for {token.user_id}")

    @staticmethod
    def _is_current(state: LiveAidCacheState | None, token: PreparationToken) -> bool:
        if state is None:
            return False
        tube_state = state.tubes[token.tube_id]
        return (
            tube_state.generation == token.generation
            and tube_state.preparation_id == token.preparation_id
        )

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def get_metrics(self) -> CacheMetrics:
        states = list(self.store.iter_states())

        with self._lock:
            lookups = self._hits + self._misses
            finished = self._completed + self._abandoned + self._stale
            return CacheMetrics(
                hits=self._hits,
                misses=self._misses,
                hit_rate=self._hits / lookups if lookups else 0.0,
                preparations_started=self._started,
                preparations_completed=self._completed,
                preparations_abandoned=self._abandoned,
                stale_discards=self._stale,
                preparation_success_rate=self._completed / finished if finished else 0.0,
                average_preparation_ms=(
                    self._preparation_ms_total / self._completed if self._completed else 0.0
                ),
                users=len(states),
                cached_stitches=sum(
                    1 for state in states for t in state.tubes.values() if t.ready_stitch is not None
                ),
            )

    def _load_or_create(self, user_id: str) -> LiveAidCacheState:
        state = self.store.get(user_id)
        if state is None:
            state = LiveAidCacheState(
                user_id=user_id,
                tubes={
                    tube: TubeCacheState(tube_id=tube, generation=next(self._generations))
                    for tube in TubeId
                },
            )
        return state


__all__ = [
    "Availability",
    "CacheMetrics",
    "CacheTTL",
    "CacheWriteResult",
    "InvalidationCriteria",
    "InvalidationResult",
    "LiveAidCacheState",
    "PreparationToken",
    "QuestionMetadata",
    "ReadinessCache",
    "ReadyQuestion",
    "ReadyStitch",
    "StitchMetadata",
    "TubeCacheState",
]
