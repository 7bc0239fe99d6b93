"""
Unit tests for ReadinessCache.

Tests:
- get / put contract (miss, expired, not ready, copies)
- TTL by boundary level
- Invalidation scope for each criterion
- Preparation tokens and stale completions
- Availability and metrics
"""

from datetime import timedelta

import pytest

from stitch_engine.cache import CacheTTL, InvalidationCriteria, ReadinessCache
from stitch_engine.errors import CacheExpired, CacheMiss, StitchNotReady, TubeNotFound, UserNotFound
from stitch_engine.models import TubeId

USER = "learner-1"


class TestGetPut:
    def test_round_trip(self, cache, make_ready_stitch):
        ready = make_ready_stitch()
        cache.put(ready, TubeId.TUBE1)

        assert cache.get(USER, TubeId.TUBE1) == ready

    def test_returns_copies(self, cache, make_ready_stitch):
        ready = make_ready_stitch()
        cache.put(ready, "tube1")

        served = cache.get(USER, "tube1")
        served.questions[0].correct_answer = "tampered"
        ready.questions[1].distractor = "tampered"

        again = cache.get(USER, "tube1")
        assert again.questions[0].correct_answer == "2"
        assert again.questions[1].distractor == "5"

    def test_unknown_user_is_a_miss(self, cache):
        with pytest.raises(CacheMiss):
            cache.get("nobody", TubeId.TUBE1)

    def test_empty_tube_is_a_miss(self, cache, make_ready_stitch):
        cache.put(make_ready_stitch(), TubeId.TUBE1)
        with pytest.raises(CacheMiss):
            cache.get(USER, TubeId.TUBE2)

    def test_unknown_tube(self, cache):
        with pytest.raises(TubeNotFound):
            cache.get(USER, "tube7")

    def test_expired_even_when_populated(self, cache, make_ready_stitch, clock):
        cache.put(make_ready_stitch(), TubeId.TUBE1)
        clock.advance(hours=29)

        with pytest.raises(CacheExpired):
            cache.get(USER, TubeId.TUBE1)

    def test_still_valid_before_expiry(self, cache, make_ready_stitch, clock):
        cache.put(make_ready_stitch(), TubeId.TUBE1)
        clock.advance(hours=28)

        assert cache.get(USER, TubeId.TUBE1).stitch_id == "A"

    def test_incomplete_question_not_served(self, cache, make_ready_stitch):
        ready = make_ready_stitch()
        ready.questions[2].distractor = ""
        cache.put(ready, TubeId.TUBE1)

        with pytest.raises(StitchNotReady):
            cache.get(USER, TubeId.TUBE1)

    def test_stitch_without_questions_not_served(self, cache, make_ready_stitch):
        cache.put(make_ready_stitch(questions=0), TubeId.TUBE1)
        with pytest.raises(StitchNotReady):
            cache.get(USER, TubeId.TUBE1)

    def test_tube_argument_wins(self, cache, make_ready_stitch):
        cache.put(make_ready_stitch(tube_id=TubeId.TUBE1), TubeId.TUBE3)
        assert cache.get(USER, TubeId.TUBE3).tube_id is TubeId.TUBE3


class TestTTL:
    @pytest.mark.parametrize("level,hours", [(1, 28.8), (3, 38.4), (5, 48.0)])
    def test_valid_until_scales_with_level(self, cache, make_ready_stitch, clock, level, hours):
        result = cache.put(make_ready_stitch(boundary_level=level), TubeId.TUBE1)

        assert result.cached is True
        assert result.cache_timestamp == clock.now
        assert result.valid_until == clock.now + timedelta(hours=hours)

    def test_valid_until_strictly_in_future(self, clock, make_ready_stitch):
        cache = ReadinessCache(ttl=CacheTTL(base=timedelta(milliseconds=1), level_factor=0), clock=clock)
        result = cache.put(make_ready_stitch(), TubeId.TUBE1)
        assert result.valid_until > result.cache_timestamp


class TestInvalidate:
    @pytest.fixture
    def full_cache(self, cache, make_ready_stitch):
        for tube in TubeId:
            cache.put(make_ready_stitch(tube_id=tube, stitch_id=f"{tube.value}-s"), tube)
        return cache

    def test_boundary_change_clears_all(self, full_cache, clock):
        result = full_cache.invalidate(USER, InvalidationCriteria(boundary_level_changed=True))

        assert result.invalidated_tubes == list(TubeId)
        assert result.timestamp == clock.now
        for tube in TubeId:
            with pytest.raises(CacheMiss):
                full_cache.get(USER, tube)

    def test_milestone_clears_active_only(self, full_cache):
        result = full_cache.invalidate(USER, InvalidationCriteria(progression_milestone=True))

        assert result.invalidated_tubes == [TubeId.TUBE1]
        with pytest.raises(CacheMiss):
            full_cache.get(USER, TubeId.TUBE1)
        assert full_cache.get(USER, TubeId.TUBE2).stitch_id == "tube2-s"
        assert full_cache.get(USER, TubeId.TUBE3).stitch_id == "tube3-s"

    def test_milestone_follows_active_tube(self, full_cache):
        full_cache.set_active_tube(USER, TubeId.TUBE2)
        result = full_cache.invalidate(USER, InvalidationCriteria(progression_milestone=True))
        assert result.invalidated_tubes == [TubeId.TUBE2]

    def test_force_refresh_clears_all(self, full_cache):
        result = full_cache.invalidate(USER, InvalidationCriteria(force_refresh=True))
        assert result.invalidated_tubes == list(TubeId)

    def test_completed_tube_clears_that_tube_only(self, full_cache):
        result = full_cache.invalidate(USER, InvalidationCriteria(completed_tube=TubeId.TUBE3))

        assert result.invalidated_tubes == [TubeId.TUBE3]
        assert result.reason == "stitch completed"
        with pytest.raises(CacheMiss):
            full_cache.get(USER, TubeId.TUBE3)
        assert full_cache.get(USER, TubeId.TUBE1).stitch_id == "tube1-s"

    def test_force_refresh_wins_over_completed_tube(self, full_cache):
        result = full_cache.invalidate(
            USER, InvalidationCriteria(force_refresh=True, completed_tube="tube2")
        )
        assert result.invalidated_tubes == list(TubeId)

    def test_boundary_change_takes_precedence(self, full_cache):
        result = full_cache.invalidate(
            USER, InvalidationCriteria(boundary_level_changed=True, progression_milestone=True)
        )
        assert result.invalidated_tubes == list(TubeId)
        assert result.reason == "boundary level changed"

    def test_max_age_clears_only_old_tubes(self, cache, make_ready_stitch, clock):
        cache.put(make_ready_stitch(tube_id=TubeId.TUBE1), TubeId.TUBE1)
        clock.advance(hours=2)
        cache.put(make_ready_stitch(tube_id=TubeId.TUBE2), TubeId.TUBE2)

        result = cache.invalidate(USER, InvalidationCriteria(max_cache_age=timedelta(hours=1)))

        assert result.invalidated_tubes == [TubeId.TUBE1]
        assert cache.get(USER, TubeId.TUBE2).stitch_id == "A"

    def test_max_age_clears_expired_tubes(self, cache, make_ready_stitch, clock):
        cache.put(make_ready_stitch(), TubeId.TUBE1)
        clock.advance(days=3)

        result = cache.invalidate(USER, InvalidationCriteria(max_cache_age=timedelta(days=30)))

        assert result.invalidated_tubes == [TubeId.TUBE1]

    def test_no_criteria(self, full_cache):
        assert full_cache.invalidate(USER, InvalidationCriteria()).invalidated_tubes == []

    def test_unknown_user(self, cache):
        result = cache.invalidate("nobody", InvalidationCriteria(force_refresh=True))
        assert result.invalidated_tubes == []


class TestPreparation:
    def test_in_flight_preparation_is_not_ready(self, cache):
        cache.begin_preparation(USER, TubeId.TUBE2, "B")
        with pytest.raises(StitchNotReady):
            cache.get(USER, TubeId.TUBE2)

    def test_complete_caches_result(self, cache, make_ready_stitch):
        token = cache.begin_preparation(USER, TubeId.TUBE2, "B")
        assert cache.update_progress(token, 0.5) is True

        result = cache.complete_preparation(token, make_ready_stitch(tube_id=TubeId.TUBE2, stitch_id="B"))

        assert result is not None
        assert cache.get(USER, TubeId.TUBE2).stitch_id == "B"

    def test_stale_completion_is_discarded(self, cache, make_ready_stitch):
        token = cache.begin_preparation(USER, TubeId.TUBE2, "B")
        cache.invalidate(USER, InvalidationCriteria(boundary_level_changed=True))

        result = cache.complete_preparation(token, make_ready_stitch(tube_id=TubeId.TUBE2, stitch_id="B"))

        assert result is None
        with pytest.raises(CacheMiss):
            cache.get(USER, TubeId.TUBE2)
        assert cache.get_metrics().stale_discards == 1

    def test_stale_token_cannot_report_progress(self, cache):
        token = cache.begin_preparation(USER, TubeId.TUBE2, "B")
        cache.invalidate(USER, InvalidationCriteria(force_refresh=True))
        assert cache.update_progress(token, 0.9) is False

    def test_completion_after_clear_user_is_discarded(self, cache, make_ready_stitch):
        token = cache.begin_preparation(USER, TubeId.TUBE1, "A")
        cache.clear_user(USER)
        cache.begin_preparation(USER, TubeId.TUBE3, "C")

        assert cache.complete_preparation(token, make_ready_stitch()) is None

    def test_abandon_clears_preparation(self, cache):
        token = cache.begin_preparation(USER, TubeId.TUBE2, "B")
        cache.abandon_preparation(token)

        with pytest.raises(CacheMiss):
            cache.get(USER, TubeId.TUBE2)
        assert cache.get_metrics().preparations_abandoned == 1

    def test_superseded_token_does_not_clobber_replacement(self, cache):
        old = cache.begin_preparation(USER, TubeId.TUBE2, "B")
        new = cache.begin_preparation(USER, TubeId.TUBE2, "B")
        cache.update_progress(new, 0.5)

        cache.abandon_preparation(old)

        state = cache.get_state(USER).tubes[TubeId.TUBE2]
        assert state.preparing_stitch_id == "B"
        assert state.preparation_progress == 0.5
        assert cache.update_progress(old, 0.7) is False


class TestAvailability:
    def test_nothing_prepared(self, cache, clock):
        availability = cache.check_availability(USER, TubeId.TUBE1)

        assert availability.is_ready is False
        assert availability.preparation_progress == 0.0
        assert availability.estimated_ready_time == clock.now + timedelta(milliseconds=2000)

    def test_partial_progress_shortens_estimate(self, cache, clock):
        token = cache.begin_preparation(USER, TubeId.TUBE1, "A")
        cache.update_progress(token, 0.5)

        availability = cache.check_availability(USER, TubeId.TUBE1)

        assert availability.preparation_progress == 0.5
        assert availability.estimated_ready_time == clock.now + timedelta(milliseconds=1000)

    def test_ready(self, cache, make_ready_stitch):
        cache.put(make_ready_stitch(), TubeId.TUBE1)
        availability = cache.check_availability(USER, TubeId.TUBE1)

        assert availability.is_ready is True
        assert availability.preparation_progress == 1.0
        assert availability.estimated_ready_time is None

    def test_expired_is_not_ready(self, cache, make_ready_stitch, clock):
        cache.put(make_ready_stitch(), TubeId.TUBE1)
        clock.advance(days=5)
        assert cache.check_availability(USER, TubeId.TUBE1).is_ready is False


class TestStateAndMetrics:
    def test_metrics(self, cache, make_ready_stitch):
        cache.put(make_ready_stitch(), TubeId.TUBE1)
        cache.put(make_ready_stitch(user_id="other"), TubeId.TUBE2)
        cache.get(USER, TubeId.TUBE1)
        with pytest.raises(CacheMiss):
            cache.get(USER, TubeId.TUBE3)

        metrics = cache.get_metrics()

        assert metrics.hits == 1
        assert metrics.misses == 1
        assert metrics.hit_rate == 0.5
        assert metrics.users == 2
        assert metrics.cached_stitches == 2

    def test_preparation_success_rate(self, cache, make_ready_stitch):
        ok = cache.begin_preparation(USER, TubeId.TUBE1, "A")
        cache.complete_preparation(ok, make_ready_stitch())
        dropped = cache.begin_preparation(USER, TubeId.TUBE2, "B")
        cache.abandon_preparation(dropped)

        metrics = cache.get_metrics()

        assert metrics.preparations_started == 2
        assert metrics.preparations_completed == 1
        assert metrics.preparation_success_rate == 0.5

    def test_set_active_tube(self, cache, clock):
        state = cache.set_active_tube(USER, "tube3")
        assert state.active_tube_id is TubeId.TUBE3
        assert state.last_rotation_time == clock.now

    def test_get_state_unknown_user(self, cache):
        with pytest.raises(UserNotFound):
            cache.get_state("nobody")

    def test_clear_user(self, cache, make_ready_stitch):
        cache.put(make_ready_stitch(), TubeId.TUBE1)

        assert cache.clear_user(USER) is True
        assert cache.clear_user(USER) is False
        with pytest.raises(CacheMiss):
            cache.get(USER, TubeId.TUBE1)
