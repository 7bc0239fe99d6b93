"""
SQLAlchemy models for durable scheduler state.

- learning_paths: one row per (namespace, user, path)
- stitch_positions: current queue contents
- reposition_history: audit trail, seq 0 = most recent
- helix_states: serialised three-tube rotation state per user

The namespace column keeps the private queues of different tubes apart
inside one database.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Index, Integer, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class LearningPathRow(Base):
    __tablename__ = "learning_paths"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    namespace: Mapped[str] = mapped_column(Text, nullable=False, default="")
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    path_id: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    __table_args__ = (
        UniqueConstraint("namespace", "user_id", "path_id", name="uq_learning_path"),
    )

    def __repr__(self) -> str:
        return f"<LearningPathRow user={self.user_id} path={self.path_id} ns={self.namespace!r}>"


class StitchPositionRow(Base):
    __tablename__ = "stitch_positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    namespace: Mapped[str] = mapped_column(Text, nullable=False, default="")
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    path_id: Mapped[str] = mapped_column(Text, nullable=False)
    stitch_id: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[dict] = mapped_column(JSON, default=dict)

    __table_args__ = (
        UniqueConstraint("namespace", "user_id", "path_id", "position", name="uq_stitch_position"),
        Index("idx_stitch_positions_path", "namespace", "user_id", "path_id"),
    )


class RepositionHistoryRow(Base):
    __tablename__ = "reposition_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    namespace: Mapped[str] = mapped_column(Text, nullable=False, default="")
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    path_id: Mapped[str] = mapped_column(Text, nullable=False)
    stitch_id: Mapped[str] = mapped_column(Text, nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_position: Mapped[int] = mapped_column(Integer, nullable=False)
    new_position: Mapped[int] = mapped_column(Integer, nullable=False)
    skip_number: Mapped[int] = mapped_column(Integer, nullable=False)
    # ISO-8601 text keeps the UTC offset on every backend
    timestamp: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        Index("idx_reposition_history_stitch", "namespace", "user_id", "path_id", "stitch_id"),
    )


class HelixStateRow(Base):
    __tablename__ = "helix_states"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    state: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())
