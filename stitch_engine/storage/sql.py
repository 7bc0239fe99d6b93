"""
SQLAlchemy-backed repository implementations.

A path is always written whole inside one transaction (delete + insert), so
a reader in another session sees either the old queue or the new one, never
a half-shifted mix.
"""

from __future__ import annotations

from datetime import datetime

from loguru import logger
from sqlalchemy import Engine, delete, exists, select

from stitch_engine.db import (
    HelixStateRow,
    LearningPathRow,
    RepositionHistoryRow,
    StitchPositionRow,
    init_db,
    make_session_factory,
    session_scope,
)
from stitch_engine.models import HelixState, PathState, QueuedStitch, RepositionResult
from stitch_engine.storage.base import HelixStore, QueueStore


class SqlQueueStore(QueueStore):
    """
    Queue store on top of the learning_paths / stitch_positions /
    reposition_history tables.

    Args:
        engine: SQLAlchemy engine
        namespace: Partition key, one per tube (empty for free learning paths)
        create_tables: Run create_all on construction
    """

    def __init__(self, engine: Engine, namespace: str = "", create_tables: bool = True):
        self.engine = engine
        self.namespace = namespace
        self._sessions = make_session_factory(engine)
        if create_tables:
            init_db(engine)

    def has_user(self, user_id: str) -> bool:
        with session_scope(self._sessions) as session:
            stmt = select(
                exists().where(
                    LearningPathRow.namespace == self.namespace,
                    LearningPathRow.user_id == user_id,
                )
            )
            return bool(session.execute(stmt).scalar())

    def list_paths(self, user_id: str) -> list[str]:
        with session_scope(self._sessions) as session:
            rows = session.execute(
                select(LearningPathRow.path_id)
                .where(
                    LearningPathRow.namespace == self.namespace,
                    LearningPathRow.user_id == user_id,
                )
                .order_by(LearningPathRow.id)
            ).scalars()
            return list(rows)

    def get_path(self, user_id: str, path_id: str) -> PathState | None:
        with session_scope(self._sessions) as session:
            path_row = session.execute(
                select(LearningPathRow.id).where(*self._path_filter(LearningPathRow, user_id, path_id))
            ).first()
            if path_row is None:
                return None

            positions = session.execute(
                select(StitchPositionRow)
                .where(*self._path_filter(StitchPositionRow, user_id, path_id))
                .order_by(StitchPositionRow.position)
            ).scalars()
            entries = [
                QueuedStitch(stitch_id=row.stitch_id, position=row.position, content=dict(row.content or {}))
                for row in positions
            ]

            history: dict[str, list[RepositionResult]] = {}
            history_rows = session.execute(
                select(RepositionHistoryRow)
                .where(*self._path_filter(RepositionHistoryRow, user_id, path_id))
                .order_by(RepositionHistoryRow.stitch_id, RepositionHistoryRow.seq)
            ).scalars()
            for row in history_rows:
                history.setdefault(row.stitch_id, []).append(
                    RepositionResult(
                        stitch_id=row.stitch_id,
                        previous_position=row.previous_position,
                        new_position=row.new_position,
                        skip_number=row.skip_number,
                        timestamp=datetime.fromisoformat(row.timestamp),
                    )
                )

        return PathState(entries=entries, history=history)

    def put_path(self, user_id: str, path_id: str, state: PathState) -> None:
        with session_scope(self._sessions) as session:
            exists_row = session.execute(
                select(LearningPathRow.id).where(*self._path_filter(LearningPathRow, user_id, path_id))
            ).first()
            if exists_row is None:
                session.add(LearningPathRow(namespace=self.namespace, user_id=user_id, path_id=path_id))

            session.execute(
                delete(StitchPositionRow).where(*self._path_filter(StitchPositionRow, user_id, path_id))
            )
            session.execute(
                delete(RepositionHistoryRow).where(
                    *self._path_filter(RepositionHistoryRow, user_id, path_id)
                )
            )

            session.add_all(
                StitchPositionRow(
                    namespace=self.namespace,
                    user_id=user_id,
                    path_id=path_id,
                    stitch_id=entry.stitch_id,
                    position=entry.position,
                    content=entry.content,
                )
                for entry in state.entries
            )
            for stitch_id, results in state.history.items():
                session.add_all(
                    RepositionHistoryRow(
                        namespace=self.namespace,
                        user_id=user_id,
                        path_id=path_id,
                        stitch_id=stitch_id,
                        seq=seq,
                        previous_position=result.previous_position,
                        new_position=result.new_position,
                        skip_number=result.skip_number,
                        timestamp=result.timestamp.isoformat(),
                    )
                    for seq, result in enumerate(results)
                )

        logger.debug(f"Stored path {path_id} for {user_id} ({len(state.entries)} stitches)")

    def _path_filter(self, model, user_id: str, path_id: str) -> tuple:
        return (
            model.namespace == self.namespace,
            model.user_id == user_id,
            model.path_id == path_id,
        )


class SqlHelixStore(HelixStore):
    """Helix state serialised as JSON in the helix_states table."""

    def __init__(self, engine: Engine, create_tables: bool = True):
        self.engine = engine
        self._sessions = make_session_factory(engine)
        if create_tables:
            init_db(engine)

    def get(self, user_id: str) -> HelixState | None:
        with session_scope(self._sessions) as session:
            row = session.get(HelixStateRow, user_id)
            if row is None:
                return None
            return HelixState.from_dict(row.state)

    def put(self, user_id: str, state: HelixState) -> None:
        with session_scope(self._sessions) as session:
            row = session.get(HelixStateRow, user_id)
            if row is None:
                session.add(HelixStateRow(user_id=user_id, state=state.to_dict()))
            else:
                row.state = state.to_dict()


__all__ = ["SqlQueueStore", "SqlHelixStore"]
