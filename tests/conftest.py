"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
from datetime import UTC, datetime, timedelta

import pytest

from stitch_engine.cache import (
    QuestionMetadata,
    ReadinessCache,
    ReadyQuestion,
    ReadyStitch,
    StitchMetadata,
)
from stitch_engine.config import Settings
from stitch_engine.db import create_db_engine
from stitch_engine.engine import StitchEngine
from stitch_engine.models import PerformanceData, TubeId
from stitch_engine.repetition_queue import RepetitionQueue
from stitch_engine.tubes import TubeRotationManager

USER = "learner-1"
PATH = "path-1"


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (engine + SQL store)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


class FixedClock:
    """Controllable clock; call it to get "now"."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Clock frozen at a known instant."""
    return FixedClock(datetime(2026, 1, 5, 9, 0, tzinfo=UTC))


@pytest.fixture
def settings():
    """Settings with defaults only (no .env)."""
    return Settings(_env_file=None)


@pytest.fixture
def queue(clock):
    """Empty in-memory repetition queue."""
    return RepetitionQueue(clock=clock)


@pytest.fixture
def abc_queue(queue):
    """Queue holding [A@1, B@2, C@3] for USER / PATH."""
    queue.initialize(USER, PATH, ["A", "B", "C"])
    return queue


@pytest.fixture
def tubes(clock):
    """In-memory tube manager."""
    return TubeRotationManager(clock=clock)


@pytest.fixture
def cache(clock):
    """In-memory readiness cache."""
    return ReadinessCache(clock=clock)


@pytest.fixture
def engine(settings, clock):
    """In-memory engine built from default settings."""
    return StitchEngine.from_settings(settings, clock=clock)


@pytest.fixture
def sql_engine():
    """In-memory SQLite engine shared across sessions."""
    engine = create_db_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def perfect():
    """20/20 at 1500ms."""
    return PerformanceData(correct_count=20, total_count=20, average_response_time=1500)


@pytest.fixture
def poor():
    """10/20 at 3000ms."""
    return PerformanceData(correct_count=10, total_count=20, average_response_time=3000)


@pytest.fixture
def make_ready_stitch():
    """Factory for complete ReadyStitch bundles."""

    def _make(
        user_id: str = USER,
        tube_id: TubeId = TubeId.TUBE1,
        stitch_id: str = "A",
        boundary_level: int = 1,
        questions: int = 3,
    ) -> ReadyStitch:
        return ReadyStitch(
            stitch_id=stitch_id,
            tube_id=tube_id,
            questions=[
                ReadyQuestion(
                    question_id=f"{stitch_id}-q{i}",
                    question_text=f"{i} x 2",
                    correct_answer=str(i * 2),
                    distractor=str(i * 2 + 1),
                    metadata=QuestionMetadata(concept_code="doubling", boundary_level=boundary_level),
                )
                for i in range(1, questions + 1)
            ],
            metadata=StitchMetadata(
                user_id=user_id,
                concept_name="Doubling",
                boundary_level=boundary_level,
                total_questions=questions,
            ),
        )

    return _make
