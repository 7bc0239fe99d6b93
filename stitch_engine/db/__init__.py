"""Database package: ORM models and engine/session helpers."""

from stitch_engine.db.database import create_db_engine, init_db, make_session_factory, session_scope
from stitch_engine.db.models import (
    Base,
    HelixStateRow,
    LearningPathRow,
    RepositionHistoryRow,
    StitchPositionRow,
)

__all__ = [
    "Base",
    "HelixStateRow",
    "LearningPathRow",
    "RepositionHistoryRow",
    "StitchPositionRow",
    "create_db_engine",
    "init_db",
    "make_session_factory",
    "session_scope",
]
