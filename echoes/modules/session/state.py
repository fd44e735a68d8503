from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from echoes.errors import InvalidSessionOperationError
from echoes.utils.time import seconds_between

SCENE_OVERRIDE_PREFIX = "__progress__:"


class SessionStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    PAUSED = "Paused"
    COMPLETED = "Completed"


ALLOWED_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.NOT_STARTED: {SessionStatus.IN_PROGRESS},
    SessionStatus.IN_PROGRESS: {SessionStatus.PAUSED, SessionStatus.COMPLETED},
    SessionStatus.PAUSED: {SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED},
    SessionStatus.COMPLETED: set(),
}


@dataclass(slots=True)
class SessionState:
    """In-memory copy of one game_sessions row.

    Mutations happen on this object; the repository writes it back under the
    version that was read.
    """

    id: str
    scenario_id: str
    profile_id: str
    account_id: str
    character_id: str | None
    status: SessionStatus
    current_scene_id: str
    start_time: datetime
    choice_history: list[dict] = field(default_factory=list)
    echo_log: list[dict] = field(default_factory=list)
    compass_values: dict[str, float] = field(default_factory=dict)
    compass_history: list[dict] = field(default_factory=list)
    scene_count: int = 1
    active_since: datetime | None = None
    elapsed_seconds: float = 0.0
    paused_at: datetime | None = None
    end_time: datetime | None = None
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    def total_elapsed_seconds(self, now: datetime | None = None) -> float:
        total = float(self.elapsed_seconds)
        if self.status == SessionStatus.IN_PROGRESS and self.active_since is not None and now is not None:
            total += seconds_between(self.active_since, now)
        return total


def require_status(state: SessionState, allowed: set[SessionStatus], action: str) -> None:
    if state.status not in allowed:
        raise InvalidSessionOperationError(f"cannot {action} a session with status {state.status.value}")


def transition(state: SessionState, target: SessionStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[state.status]:
        raise InvalidSessionOperationError(f"invalid transition {state.status.value} -> {target.value}")
    state.status = target


def fold_active_segment(state: SessionState, now: datetime) -> None:
    if state.active_since is not None:
        state.elapsed_seconds = float(state.elapsed_seconds) + seconds_between(state.active_since, now)
    state.active_since = None


def pause(state: SessionState, now: datetime) -> None:
    require_status(state, {SessionStatus.IN_PROGRESS}, "pause")
    fold_active_segment(state, now)
    transition(state, SessionStatus.PAUSED)
    state.paused_at = now


def resume(state: SessionState, now: datetime) -> None:
    require_status(state, {SessionStatus.PAUSED}, "resume")
    transition(state, SessionStatus.IN_PROGRESS)
    state.paused_at = None
    state.active_since = now


def complete(state: SessionState, now: datetime) -> None:
    # an open pause interval is dropped, not counted
    if state.status == SessionStatus.IN_PROGRESS:
        fold_active_segment(state, now)
    transition(state, SessionStatus.COMPLETED)
    state.active_since = None
    state.paused_at = None
    state.end_time = now


def is_scene_override(entry: dict) -> bool:
    return str(entry.get("kind") or "") == "scene_override"


def count_choices(history: list[dict]) -> int:
    return sum(1 for entry in history if not is_scene_override(entry))
