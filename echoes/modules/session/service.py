from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from echoes.errors import EngineValidationError, SessionConcurrencyError
from echoes.modules.achievements.evaluator import UnlockedAchievement
from echoes.modules.achievements.service import evaluate_and_award, list_session_achievements
from echoes.modules.profiles.service import (
    get_character,
    get_profile,
    require_age_compatible,
    require_character_in_pool,
)
from echoes.modules.scenario.schemas import ChoiceDef, ScenarioGraph
from echoes.modules.scenario.service import get_scenario
from echoes.modules.session.compass import apply_deltas, initial_values
from echoes.modules.session.echo_log import echo_entry
from echoes.modules.session.repository import (
    insert_session,
    list_sessions,
    read_session,
    storage_errors,
    write_session,
)
from echoes.modules.session.routing import resolve_next_scene_id
from echoes.modules.session.state import (
    SCENE_OVERRIDE_PREFIX,
    SessionState,
    SessionStatus,
    complete,
    count_choices,
    pause,
    require_status,
    resume,
)
from echoes.modules.session.stats import SessionStats, compute_session_stats
from echoes.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

_OPEN_STATUSES = {SessionStatus.IN_PROGRESS, SessionStatus.PAUSED}


@dataclass(slots=True)
class SessionOutcome:
    session: SessionState
    new_achievements: list[UnlockedAchievement] = field(default_factory=list)


def _load_graph(db: Session, state: SessionState) -> ScenarioGraph:
    # running sessions keep playing even if the scenario was unpublished since start
    return get_scenario(db, state.scenario_id, require_published=False)


def _mutate_session(
    db: Session,
    session_id: str,
    *,
    operation: str,
    mutate: Callable[[SessionState, ScenarioGraph], bool | None],
    now: datetime,
    expected_version: int | None = None,
) -> tuple[SessionState, ScenarioGraph]:
    """Read, mutate and write one session inside a single versioned transaction.

    A ``mutate`` that returns ``False`` leaves the stored row untouched and the
    state is returned as read.
    """
    with storage_errors(operation), db.begin():
        state = read_session(db, session_id)
        if expected_version is not None and expected_version != state.version:
            logger.warning(
                "%s on session %s expected version %s, found %s", operation, state.id, expected_version, state.version
            )
            raise SessionConcurrencyError(stage="expected_version")
        graph = _load_graph(db, state)
        read_version = state.version
        if mutate(state, graph) is False:
            return state, graph
        try:
            write_session(db, state, expected_version=read_version, now=now)
        except SessionConcurrencyError:
            logger.warning("%s lost the version race on session %s at version %s", operation, state.id, read_version)
            raise
    return state, graph


def _award(db: Session, state: SessionState, graph: ScenarioGraph, *, now: datetime) -> list[UnlockedAchievement]:
    # runs after the session write has committed; storage failures here never fail the operation
    try:
        return evaluate_and_award(
            db,
            session_id=state.id,
            profile_id=state.profile_id,
            age_group=graph.age_group,
            compass_values=state.compass_values,
            choice_count=count_choices(state.choice_history),
            completed=state.is_terminal,
            now=now,
        )
    except SQLAlchemyError:
        logger.exception("achievement pass failed for session %s at version %s", state.id, state.version)
        return []


def start_session(
    db: Session,
    *,
    scenario_id: str,
    profile_id: str,
    character_id: str | None = None,
    now: datetime | None = None,
) -> SessionState:
    started_at = now or utc_now_naive()
    with storage_errors("start_session"), db.begin():
        graph = get_scenario(db, scenario_id)
        profile = get_profile(db, profile_id)
        require_age_compatible(profile, graph)
        selected_character_id = None
        if character_id:
            character = get_character(db, character_id)
            require_character_in_pool(character, graph)
            selected_character_id = character.id

        state = SessionState(
            id=str(uuid.uuid4()),
            scenario_id=graph.scenario_id,
            profile_id=profile.id,
            account_id=profile.account_id,
            character_id=selected_character_id,
            status=SessionStatus.IN_PROGRESS,
            current_scene_id=graph.entry_scene_id,
            start_time=started_at,
            compass_values=initial_values(graph.baselines()),
            active_since=started_at,
            version=1,
            created_at=started_at,
        )
        insert_session(db, state)
    logger.info("session %s started on scenario %s for profile %s", state.id, state.scenario_id, state.profile_id)
    return state


def get_session(db: Session, session_id: str) -> SessionState:
    with storage_errors("get_session"), db.begin():
        return read_session(db, session_id)


def _apply_choice(state: SessionState, graph: ScenarioGraph, choice: ChoiceDef, *, now: datetime) -> None:
    from_scene_id = state.current_scene_id
    choice_index = len(state.choice_history)
    values, entries = apply_deltas(
        state.compass_values,
        choice.compass_deltas,
        choice_id=choice.choice_id,
        choice_index=choice_index,
        at=now,
    )
    next_scene_id = resolve_next_scene_id(choice.route, values)

    state.choice_history.append(
        {
            "choice_id": choice.choice_id,
            "scene_id": from_scene_id,
            "next_scene_id": next_scene_id,
            "kind": "choice",
            "chosen_at": now.isoformat(),
        }
    )
    state.echo_log.append(echo_entry(choice, at=now))
    state.compass_values = values
    state.compass_history.extend(entries)
    state.current_scene_id = next_scene_id
    state.scene_count += 1

    next_scene = graph.scene(next_scene_id)
    if next_scene is None or next_scene.is_terminal:
        complete(state, now)


def make_choice(
    db: Session,
    session_id: str,
    choice_id: str,
    *,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> SessionOutcome:
    chosen_at = now or utc_now_naive()
    cleaned_choice_id = str(choice_id or "").strip()

    def _mutate(state: SessionState, graph: ScenarioGraph) -> None:
        require_status(state, {SessionStatus.IN_PROGRESS}, "make a choice in")
        scene = graph.scene(state.current_scene_id)
        if scene is None:
            raise EngineValidationError(f"current scene {state.current_scene_id!r} is not part of the scenario")
        choice = scene.choice(cleaned_choice_id)
        if choice is None:
            raise EngineValidationError(f"choice {cleaned_choice_id!r} is not available in scene {scene.scene_id!r}")
        _apply_choice(state, graph, choice, now=chosen_at)

    state, graph = _mutate_session(
        db,
        session_id,
        operation="make_choice",
        mutate=_mutate,
        now=chosen_at,
        expected_version=expected_version,
    )
    logger.info(
        "session %s applied choice %s, now at scene %s (status %s, version %s)",
        state.id,
        cleaned_choice_id,
        state.current_scene_id,
        state.status.value,
        state.version,
    )
    return SessionOutcome(session=state, new_achievements=_award(db, state, graph, now=chosen_at))


def pause_session(db: Session, session_id: str, *, now: datetime | None = None) -> SessionState:
    paused_at = now or utc_now_naive()
    state, _ = _mutate_session(
        db,
        session_id,
        operation="pause_session",
        mutate=lambda state, _graph: pause(state, paused_at),
        now=paused_at,
    )
    logger.info("session %s paused", state.id)
    return state


def resume_session(db: Session, session_id: str, *, now: datetime | None = None) -> SessionState:
    resumed_at = now or utc_now_naive()
    state, _ = _mutate_session(
        db,
        session_id,
        operation="resume_session",
        mutate=lambda state, _graph: resume(state, resumed_at),
        now=resumed_at,
    )
    logger.info("session %s resumed", state.id)
    return state


def end_session(db: Session, session_id: str, *, now: datetime | None = None) -> SessionOutcome:
    ended_at = now or utc_now_naive()
    already_completed = False

    def _mutate(state: SessionState, _graph: ScenarioGraph) -> bool:
        nonlocal already_completed
        if state.is_terminal:
            already_completed = True
            return False
        require_status(state, _OPEN_STATUSES, "end")
        complete(state, ended_at)
        return True

    state, graph = _mutate_session(db, session_id, operation="end_session", mutate=_mutate, now=ended_at)
    if already_completed:
        logger.info("session %s already completed, end is a no-op", state.id)
        return SessionOutcome(session=state)
    logger.info("session %s completed after %.1f active seconds", state.id, state.elapsed_seconds)
    return SessionOutcome(session=state, new_achievements=_award(db, state, graph, now=ended_at))


def progress_session_scene(
    db: Session,
    session_id: str,
    new_scene_id: str,
    *,
    now: datetime | None = None,
) -> SessionState:
    moved_at = now or utc_now_naive()
    target_scene_id = str(new_scene_id or "").strip()

    def _mutate(state: SessionState, graph: ScenarioGraph) -> None:
        require_status(state, _OPEN_STATUSES, "move the scene of")
        if graph.scene(target_scene_id) is None:
            raise EngineValidationError(f"scene {target_scene_id!r} is not part of the scenario")
        state.choice_history.append(
            {
                "choice_id": f"{SCENE_OVERRIDE_PREFIX}{target_scene_id}",
                "scene_id": state.current_scene_id,
                "next_scene_id": target_scene_id,
                "kind": "scene_override",
                "chosen_at": moved_at.isoformat(),
            }
        )
        state.current_scene_id = target_scene_id
        state.scene_count += 1

    state, _ = _mutate_session(db, session_id, operation="progress_session_scene", mutate=_mutate, now=moved_at)
    logger.info("session %s moved to scene %s by override", state.id, state.current_scene_id)
    return state


def select_character(
    db: Session,
    session_id: str,
    character_id: str,
    *,
    now: datetime | None = None,
) -> SessionState:
    selected_at = now or utc_now_naive()

    def _mutate(state: SessionState, graph: ScenarioGraph) -> None:
        require_status(state, _OPEN_STATUSES, "select a character for")
        character = get_character(db, character_id)
        require_character_in_pool(character, graph)
        state.character_id = character.id

    state, _ = _mutate_session(db, session_id, operation="select_character", mutate=_mutate, now=selected_at)
    logger.info("session %s selected character %s", state.id, state.character_id)
    return state


def get_session_stats(db: Session, session_id: str, *, now: datetime | None = None) -> SessionStats:
    with storage_errors("get_session_stats"), db.begin():
        state = read_session(db, session_id)
        graph = _load_graph(db, state)
        achievements = list_session_achievements(db, state.id)
    return compute_session_stats(state, graph, now=now or utc_now_naive(), achievements=achievements)


def get_achievements(db: Session, session_id: str) -> list[UnlockedAchievement]:
    with storage_errors("get_achievements"), db.begin():
        state = read_session(db, session_id)
        return list_session_achievements(db, state.id)


def list_sessions_by_account(db: Session, account_id: str, *, limit: int | None = None) -> list[SessionState]:
    with storage_errors("list_sessions_by_account"), db.begin():
        return list_sessions(db, account_id=str(account_id or "").strip(), limit=limit)


def list_sessions_by_profile(db: Session, profile_id: str, *, limit: int | None = None) -> list[SessionState]:
    with storage_errors("list_sessions_by_profile"), db.begin():
        return list_sessions(db, profile_id=str(profile_id or "").strip(), limit=limit)


def list_in_progress_sessions(db: Session, account_id: str, *, limit: int | None = None) -> list[SessionState]:
    with storage_errors("list_in_progress_sessions"), db.begin():
        return list_sessions(db, account_id=str(account_id or "").strip(), statuses=_OPEN_STATUSES, limit=limit)
