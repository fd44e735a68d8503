from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import select, update as sql_update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from echoes.config import settings
from echoes.db.models import GameSession
from echoes.errors import EngineNotFoundError, SessionConcurrencyError, StorageUnavailableError
from echoes.modules.session.state import SessionState, SessionStatus
from echoes.utils.time import utc_now_naive

logger = logging.getLogger(__name__)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("session store failure during %s", operation)
        raise StorageUnavailableError(f"session store unavailable during {operation}") from exc


def _state_from_row(row: GameSession) -> SessionState:
    return SessionState(
        id=row.id,
        scenario_id=row.scenario_id,
        profile_id=row.profile_id,
        account_id=row.account_id,
        character_id=row.character_id,
        status=SessionStatus(row.status),
        current_scene_id=row.current_scene_id,
        start_time=row.start_time,
        choice_history=list(row.choice_history or []),
        echo_log=list(row.echo_log or []),
        compass_values={str(k): float(v) for k, v in (row.compass_values or {}).items()},
        compass_history=list(row.compass_history or []),
        scene_count=int(row.scene_count or 1),
        active_since=row.active_since,
        elapsed_seconds=float(row.elapsed_seconds or 0.0),
        paused_at=row.paused_at,
        end_time=row.end_time,
        version=int(row.version or 1),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _mutable_columns(state: SessionState) -> dict:
    return {
        "character_id": state.character_id,
        "status": state.status.value,
        "current_scene_id": state.current_scene_id,
        "choice_history": list(state.choice_history),
        "echo_log": list(state.echo_log),
        "compass_values": dict(state.compass_values),
        "compass_history": list(state.compass_history),
        "scene_count": int(state.scene_count),
        "active_since": state.active_since,
        "elapsed_seconds": float(state.elapsed_seconds),
        "paused_at": state.paused_at,
        "end_time": state.end_time,
    }


def read_session(db: Session, session_id: str) -> SessionState:
    row = db.get(GameSession, str(session_id or "").strip())
    if row is None:
        raise EngineNotFoundError("session not found")
    return _state_from_row(row)


def insert_session(db: Session, state: SessionState) -> SessionState:
    now = state.created_at or utc_now_naive()
    row = GameSession(
        id=state.id,
        scenario_id=state.scenario_id,
        profile_id=state.profile_id,
        account_id=state.account_id,
        start_time=state.start_time,
        version=int(state.version),
        created_at=now,
        updated_at=now,
        **_mutable_columns(state),
    )
    db.add(row)
    db.flush()
    state.created_at = now
    state.updated_at = now
    return state


def write_session(db: Session, state: SessionState, *, expected_version: int, now: datetime | None = None) -> SessionState:
    """Persist ``state`` only if the stored row is still at ``expected_version``."""
    updated_at = now or utc_now_naive()
    committed_version = int(expected_version) + 1
    result = db.execute(
        sql_update(GameSession)
        .where(
            GameSession.id == state.id,
            GameSession.version == int(expected_version),
        )
        .values(
            updated_at=updated_at,
            version=committed_version,
            **_mutable_columns(state),
        )
    )
    if int(result.rowcount or 0) != 1:
        raise SessionConcurrencyError(stage="session_update")
    state.version = committed_version
    state.updated_at = updated_at
    return state


def list_sessions(
    db: Session,
    *,
    account_id: str | None = None,
    profile_id: str | None = None,
    statuses: set[SessionStatus] | None = None,
    limit: int | None = None,
) -> list[SessionState]:
    stmt = select(GameSession)
    if account_id is not None:
        stmt = stmt.where(GameSession.account_id == account_id)
    if profile_id is not None:
        stmt = stmt.where(GameSession.profile_id == profile_id)
    if statuses:
        stmt = stmt.where(GameSession.status.in_(sorted(item.value for item in statuses)))
    row_limit = max(1, int(limit or settings.session_list_limit))
    stmt = stmt.order_by(GameSession.created_at.desc(), GameSession.id.desc()).limit(row_limit)
    return [_state_from_row(row) for row in db.execute(stmt).scalars().all()]
