"""
Stitch engine facade.

StitchEngine is the one object callers hold. It wires the repetition queue,
the three-tube rotation, the readiness cache and (optionally) background
preparation, and serialises every mutation for a user behind that user's
re-entrant lock. Nothing is module-global: build as many engines as needed.

Usage:
    engine = StitchEngine.from_settings()
    engine.initialize_learning_path("u1", "path-1", ["A", "B", "C"])
    head = engine.get_next_stitch("u1", "path-1")
    engine.reposition_stitch("u1", head.stitch_id, PerformanceData(20, 20, 1500))
"""

from __future__ import annotations

import asyncio
import threading
import weakref
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from loguru import logger
from sqlalchemy import Engine

from stitch_engine.cache import (
    Availability,
    CacheMetrics,
    CacheWriteResult,
    InvalidationCriteria,
    InvalidationResult,
    ReadinessCache,
    ReadyStitch,
)
from stitch_engine.config import Settings, get_settings
from stitch_engine.db import create_db_engine
from stitch_engine.errors import InvalidInputError, StitchEngineError
from stitch_engine.models import (
    HelixState,
    PerformanceData,
    QueuedStitch,
    RepositionResult,
    Stitch,
    TubeId,
    TubeStatus,
    utc_now,
)
from stitch_engine.population import SurprisePolicy
from stitch_engine.preparation import FactLookup, StitchPreparer
from stitch_engine.repetition_queue import RepetitionQueue
from stitch_engine.skip_number import SkipNumberCalculator
from stitch_engine.storage import (
    InMemoryHelixStore,
    InMemoryQueueStore,
    SqlHelixStore,
    SqlQueueStore,
)
from stitch_engine.tubes import RotationResult, TubeRotationManager


class UserLocks:
    """
    Lazily created re-entrant lock per user id.

    Locks are held weakly: once no caller holds a user's lock the entry
    drops out, so the map only covers users with work in progress.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, threading.RLock] = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def for_user(self, user_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.RLock()
            return lock

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class CompletionOutcome:
    """Everything that happened when the learner finished the live stitch."""

    tube_id: TubeId
    reposition: RepositionResult
    rotation: RotationResult
    invalidation: InvalidationResult
    next_availability: Availability
    refresh: asyncio.Task | None = None


class StitchEngine:
    """
    Facade over queue, tubes and cache.

    Args:
        queue: RepetitionQueue for free-standing learning paths
        tubes: TubeRotationManager owning the three tube queues
        cache: ReadinessCache
        preparer: StitchPreparer for background assembly (optional)
        surprise: SurprisePolicy applied to tube seeds (optional)
        clock: Source of "now"
    """

    def __init__(
        self,
        queue: RepetitionQueue | None = None,
        tubes: TubeRotationManager | None = None,
        cache: ReadinessCache | None = None,
        preparer: StitchPreparer | None = None,
        surprise: SurprisePolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.clock = clock
        self.queue = queue or RepetitionQueue(clock=clock)
        self.tubes = tubes or TubeRotationManager(clock=clock)
        self.cache = cache or ReadinessCache(clock=clock)
        self.preparer = preparer
        self.surprise = surprise
        self._locks = UserLocks()
        self._boundary_levels: dict[str, int] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        db_engine: Engine | None = None,
        facts: FactLookup | None = None,
        durable: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> StitchEngine:
        """
        Build an engine from Settings.

        Args:
            db_engine: SQLAlchemy engine for durable stores (implies durable)
            facts: Enables background preparation when given
            durable: Use settings.database_url for queue and helix state
        """
        settings = settings or get_settings()
        skip_config = settings.skip_config()

        if db_engine is None and durable:
            db_engine = create_db_engine(settings.database_url, echo=settings.database_echo)

        def make_queue(store) -> RepetitionQueue:
            return RepetitionQueue(
                store=store,
                calculator=SkipNumberCalculator(skip_config),
                minimum_displacement=settings.minimum_displacement,
                clock=clock,
            )

        if db_engine is not None:
            queue = make_queue(SqlQueueStore(db_engine))
            helix_store = SqlHelixStore(db_engine, create_tables=False)

            def tube_queue(tube: TubeId) -> RepetitionQueue:
                return make_queue(SqlQueueStore(db_engine, namespace=tube.value, create_tables=False))

        else:
            queue = make_queue(InMemoryQueueStore())
            helix_store = InMemoryHelixStore()

            def tube_queue(tube: TubeId) -> RepetitionQueue:
                return make_queue(InMemoryQueueStore())

        tubes = TubeRotationManager(
            store=helix_store,
            queue_factory=tube_queue,
            default_difficulty=settings.default_difficulty,
            clock=clock,
        )
        cache = ReadinessCache(ttl=settings.cache_ttl(), clock=clock)
        preparer = (
            StitchPreparer(facts, cache, questions_per_stitch=settings.questions_per_stitch)
            if facts is not None
            else None
        )

        logger.debug(f"Built stitch engine (durable={db_engine is not None})")
        return cls(
            queue=queue,
            tubes=tubes,
            cache=cache,
            preparer=preparer,
            surprise=SurprisePolicy(rate=settings.surprise_rate),
            clock=clock,
        )

    # =========================================================================
    # Learning paths
    # =========================================================================

    def initialize_learning_path(
        self,
        user_id: str,
        path_id: str,
        units: Iterable[Stitch | str],
    ) -> None:
        with self._locks.for_user(user_id):
            self.queue.initialize(user_id, path_id, units)

    def add_stitch(
        self,
        user_id: str,
        path_id: str,
        stitch: Stitch | str,
        position: int | None = None,
    ) -> QueuedStitch:
        with self._locks.for_user(user_id):
            return self.queue.add_stitch(user_id, path_id, stitch, position)

    def get_next_stitch(self, user_id: str, path_id: str) -> QueuedStitch:
        return self.queue.get_next(user_id, path_id)

    def reposition_stitch(
        self,
        user_id: str,
        stitch_id: str,
        performance: PerformanceData,
        path_id: str | None = None,
    ) -> RepositionResult:
        with self._locks.for_user(user_id):
            return self.queue.reposition(user_id, stitch_id, performance, path_id=path_id)

    def get_stitch_queue(self, user_id: str, path_id: str) -> list[dict]:
        return self.queue.get_queue(user_id, path_id)

    def get_repositioning_history(
        self,
        user_id: str,
        stitch_id: str,
        limit: int | None = None,
    ) -> list[RepositionResult]:
        return self.queue.get_history(user_id, stitch_id, limit)

    # =========================================================================
    # Tubes
    # =========================================================================

    def initialize_user(
        self,
        user_id: str,
        initial_difficulty: int | None = None,
        seeds: Mapping[TubeId | str, Iterable[Stitch | str]] | None = None,
        reset: bool = False,
    ) -> HelixState:
        """
        Set up the three tubes (tube1 live). Seeds go through the surprise
        policy when one is configured. Resetting also drops cached stitches.
        """
        with self._locks.for_user(user_id):
            if seeds and self.surprise is not None:
                seeds = {tube: self.surprise.populate(tube, list(units)) for tube, units in seeds.items()}

            state = self.tubes.initialize(user_id, initial_difficulty, seeds=seeds, reset=reset)
            if reset:
                self.cache.clear_user(user_id)
            self.cache.set_active_tube(user_id, state.active_tube)
            return state

    def get_active_tube(self, user_id: str) -> TubeId:
        return self.tubes.get_active(user_id)

    def rotate_tubes(self, user_id: str) -> TubeId:
        with self._locks.for_user(user_id):
            rotation = self.tubes.rotate(user_id, reason="manual")
            self.cache.set_active_tube(user_id, rotation.active_tube)
            return rotation.active_tube

    def complete_active_stitch(
        self,
        user_id: str,
        performance: PerformanceData,
        milestone: bool = False,
    ) -> CompletionOutcome:
        """
        Finish the stitch at the head of the live tube.

        Repositions it within its tube and drops that tube's cached bundle,
        since its head has changed (a progression milestone is recorded as the
        reason when flagged). Then rotates to the next tube and reports whether
        the newly live tube can be served instantly.

        With a preparer configured and an event loop running, the completed
        tube's new head is prepared in the background; the task is returned
        as `refresh`.
        """
        with self._locks.for_user(user_id):
            tube, head = self.tubes.get_active_stitch(user_id)
            result = self.tubes.reposition(user_id, tube, head.stitch_id, performance)

            criteria = (
                InvalidationCriteria(progression_milestone=True)
                if milestone
                else InvalidationCriteria(completed_tube=tube)
            )
            invalidation = self.cache.invalidate(user_id, criteria)

            rotation = self.tubes.rotate(user_id)
            self.cache.set_active_tube(user_id, rotation.active_tube)
            availability = self.cache.check_availability(user_id, rotation.active_tube)
            refresh = self._schedule_refresh(user_id, tube)

        logger.info(
            f"{user_id} completed {head.stitch_id} in {tube.value}: "
            f"moved to {result.new_position}, {rotation.active_tube.value} now live"
        )
        return CompletionOutcome(
            tube_id=tube,
            reposition=result,
            rotation=rotation,
            invalidation=invalidation,
            next_availability=availability,
            refresh=refresh,
        )

    # =========================================================================
    # Readiness cache
    # =========================================================================

    def get_ready_stitch(self, user_id: str, tube_id: TubeId | str) -> ReadyStitch:
        return self.cache.get(user_id, tube_id)

    def cache_ready_stitch(self, ready_stitch: ReadyStitch, tube_id: TubeId | str) -> CacheWriteResult:
        return self.cache.put(ready_stitch, tube_id)

    def invalidate_cache(self, user_id: str, criteria: InvalidationCriteria) -> InvalidationResult:
        with self._locks.for_user(user_id):
            return self.cache.invalidate(user_id, criteria)

    def check_availability(self, user_id: str, tube_id: TubeId | str) -> Availability:
        return self.cache.check_availability(user_id, tube_id)

    def get_cache_metrics(self) -> CacheMetrics:
        return self.cache.get_metrics()

    def boundary_level(self, user_id: str) -> int:
        return self._boundary_levels.get(user_id, 1)

    def record_boundary_level(self, user_id: str, level: int) -> InvalidationResult | None:
        """
        Track the learner's boundary level. A change from the current level
        (1 until one is recorded) invalidates all three tubes.
        """
        if isinstance(level, bool) or not isinstance(level, int) or not 1 <= level <= 5:
            raise InvalidInputError(f"Boundary level must be 1..5, got {level!r}")

        with self._locks.for_user(user_id):
            previous = self.boundary_level(user_id)
            self._boundary_levels[user_id] = level
            if previous == level:
                return None

            logger.info(f"Boundary level for {user_id} changed {previous} -> {level}")
            return self.cache.invalidate(user_id, InvalidationCriteria(boundary_level_changed=True))

    async def prepare_tube(self, user_id: str, tube_id: TubeId | str) -> CacheWriteResult | None:
        """
        Assemble and cache the head stitch of a tube in the background.

        The stitch's concept comes from its content ("concept_code"), falling
        back to the stitch id.
        """
        if self.preparer is None:
            raise StitchEngineError("No fact lookup configured for stitch preparation")

        tube = TubeId.parse(tube_id)
        result = await self.preparer.prepare(user_id, tube, **self._preparation_request(user_id, tube))
        if result is not None:
            self._mark_prepared(user_id, tube)
        return result

    def _preparation_request(self, user_id: str, tube: TubeId) -> dict:
        state = self.tubes.get_state(user_id)
        head = self.tubes.queue_for(tube).get_next(user_id, state.tubes[tube].path_id)
        return {
            "stitch_id": head.stitch_id,
            "concept_code": head.content.get("concept_code", head.stitch_id),
            "boundary_level": self.boundary_level(user_id),
            "is_surprise": bool(head.content.get("is_surprise", False)),
        }

    def _mark_prepared(self, user_id: str, tube: TubeId) -> None:
        with self._locks.for_user(user_id):
            if self.tubes.get_state(user_id).tubes[tube].status is TubeStatus.PREPARING:
                self.tubes.mark_ready(user_id, tube)

    def _schedule_refresh(self, user_id: str, tube: TubeId) -> asyncio.Task | None:
        if self.preparer is None:
            return None
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, {tube.value} for {user_id} waits for prepare_tube")
            return None

        task = self.preparer.schedule(user_id, tube, **self._preparation_request(user_id, tube))

        def _on_done(done: asyncio.Task) -> None:
            if not done.cancelled() and done.exception() is None and done.result() is not None:
                self._mark_prepared(user_id, tube)

        task.add_done_callback(_on_done)
        return task
