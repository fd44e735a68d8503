from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from echoes.errors import InvalidSessionOperationError
from echoes.modules.session.state import SessionState, SessionStatus, complete, pause, resume, transition

T0 = datetime(2026, 3, 1, 9, 0, 0)


def _state(**overrides) -> SessionState:
    values = dict(
        id="s1",
        scenario_id="forest_walk",
        profile_id="p1",
        account_id="a1",
        character_id=None,
        status=SessionStatus.IN_PROGRESS,
        current_scene_id="entry",
        start_time=T0,
        active_since=T0,
    )
    values.update(overrides)
    return SessionState(**values)


def test_pause_resume_excludes_paused_interval() -> None:
    state = _state()
    pause(state, T0 + timedelta(minutes=2))
    assert state.status == SessionStatus.PAUSED
    assert state.elapsed_seconds == 120.0
    assert state.total_elapsed_seconds(T0 + timedelta(hours=1)) == 120.0

    resume(state, T0 + timedelta(minutes=12))
    assert state.status == SessionStatus.IN_PROGRESS
    assert state.paused_at is None
    assert state.total_elapsed_seconds(T0 + timedelta(minutes=13)) == 180.0


def test_complete_while_paused_drops_open_pause() -> None:
    state = _state()
    pause(state, T0 + timedelta(minutes=5))
    complete(state, T0 + timedelta(minutes=30))
    assert state.status == SessionStatus.COMPLETED
    assert state.elapsed_seconds == 300.0
    assert state.end_time == T0 + timedelta(minutes=30)
    assert state.paused_at is None


def test_completed_is_terminal() -> None:
    state = _state()
    complete(state, T0 + timedelta(minutes=1))
    for target in SessionStatus:
        with pytest.raises(InvalidSessionOperationError):
            transition(state, target)


def test_pause_requires_in_progress() -> None:
    state = _state(status=SessionStatus.PAUSED, active_since=None, paused_at=T0)
    with pytest.raises(InvalidSessionOperationError):
        pause(state, T0)


def test_resume_requires_paused() -> None:
    with pytest.raises(InvalidSessionOperationError):
        resume(_state(), T0)


def test_not_started_only_moves_to_in_progress() -> None:
    state = _state(status=SessionStatus.NOT_STARTED, active_since=None)
    with pytest.raises(InvalidSessionOperationError):
        transition(state, SessionStatus.PAUSED)
    transition(state, SessionStatus.IN_PROGRESS)
    assert state.status == SessionStatus.IN_PROGRESS
