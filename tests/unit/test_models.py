"""Unit tests for the shared domain records."""

from datetime import UTC, datetime

import pytest

from stitch_engine.errors import InvalidSessionResults, TubeNotFound
from stitch_engine.models import (
    HelixState,
    PathState,
    PerformanceData,
    QuestionResult,
    QueuedStitch,
    TubeId,
    TubeState,
    TubeStatus,
)


class TestPerformanceData:
    def test_ratio_and_perfect(self):
        performance = PerformanceData(15, 20, 2000)
        assert performance.correctness_ratio == 0.75
        assert not performance.is_perfect
        assert PerformanceData(5, 5, 2000).is_perfect

    def test_from_session_results(self):
        results = [
            QuestionResult(correct=True, response_ms=1000),
            QuestionResult(correct=False, response_ms=3000),
            QuestionResult(correct=True, response_ms=2000),
        ]

        performance = PerformanceData.from_session_results(results)

        assert performance.correct_count == 2
        assert performance.total_count == 3
        assert performance.average_response_time == 2000

    def test_from_session_results_keeps_completion_time(self):
        done = datetime(2026, 2, 1, tzinfo=UTC)
        performance = PerformanceData.from_session_results([QuestionResult(True, 900)], completed_at=done)
        assert performance.completed_at == done

    def test_empty_session(self):
        with pytest.raises(InvalidSessionResults):
            PerformanceData.from_session_results([])

    @pytest.mark.parametrize("response_ms", [0, -5, None])
    def test_bad_timing(self, response_ms):
        with pytest.raises(InvalidSessionResults):
            PerformanceData.from_session_results([QuestionResult(True, response_ms)])


class TestPathState:
    def test_contiguity(self):
        state = PathState(entries=[QueuedStitch("A", 2), QueuedStitch("B", 1)])
        assert state.is_contiguous()
        assert [e.stitch_id for e in state.ordered()] == ["B", "A"]

    @pytest.mark.parametrize("positions", [[1, 3], [1, 1], [0, 1], [2, 3]])
    def test_gaps_and_duplicates(self, positions):
        state = PathState(entries=[QueuedStitch(f"s{i}", p) for i, p in enumerate(positions)])
        assert not state.is_contiguous()

    def test_empty_is_contiguous(self):
        assert PathState().is_contiguous()


class TestTubes:
    def test_next_cycles(self):
        assert TubeId.TUBE1.next() is TubeId.TUBE2
        assert TubeId.TUBE3.next() is TubeId.TUBE1

    def test_parse(self):
        assert TubeId.parse("tube2") is TubeId.TUBE2
        with pytest.raises(TubeNotFound):
            TubeId.parse("tube0")

    def test_helix_state_serialisation(self):
        now = datetime(2026, 1, 5, tzinfo=UTC)
        state = HelixState(
            user_id="u1",
            active_tube=TubeId.TUBE2,
            tubes={
                tube: TubeState(tube, TubeStatus.READY, 3, tube.value, now)
                for tube in TubeId
            },
            rotation_count=4,
            last_rotation_time=now,
        )

        assert HelixState.from_dict(state.to_dict()) == state
