from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from echoes.db import session as db_session
from echoes.db.base import Base
from echoes.errors import (
    EngineNotFoundError,
    EngineValidationError,
    InvalidSessionOperationError,
    SessionConcurrencyError,
    StorageUnavailableError,
)
from echoes.modules.session import service as session_service
from echoes.modules.session.repository import read_session, write_session
from echoes.modules.session.state import SessionStatus
from tests.support.scenario_seed import (
    ACCOUNT_ID,
    KID_PROFILE_ID,
    OLDER_PROFILE_ID,
    OTHER_ACCOUNT_PROFILE_ID,
    TODDLER_PROFILE_ID,
    at,
    seed_forest_world,
)


def _start(db, profile_id: str = KID_PROFILE_ID, *, minutes: float = 0.0, character_id: str | None = None):
    return session_service.start_session(
        db,
        scenario_id="forest_walk",
        profile_id=profile_id,
        character_id=character_id,
        now=at(minutes),
    )


def test_start_session_initializes_in_progress_state() -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        state = _start(db)
        loaded = session_service.get_session(db, state.id)

    assert loaded.status == SessionStatus.IN_PROGRESS
    assert loaded.current_scene_id == "entry"
    assert loaded.compass_values == {"courage": 0.0, "kindness": 0.0}
    assert loaded.choice_history == []
    assert loaded.echo_log == []
    assert loaded.account_id == ACCOUNT_ID
    assert loaded.version == 1
    assert loaded.elapsed_seconds == 0.0
    assert loaded.start_time == at(0)


def test_start_session_rejects_unpublished_scenario() -> None:
    seed_forest_world(publish=False)
    with db_session.SessionLocal() as db:
        with pytest.raises(EngineNotFoundError):
            _start(db)


def test_start_session_rejects_unknown_profile_and_scenario() -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        with pytest.raises(EngineNotFoundError):
            _start(db, "profile-missing")
        with pytest.raises(EngineNotFoundError):
            session_service.start_session(db, scenario_id="missing", profile_id=KID_PROFILE_ID)


def test_start_session_rejects_age_incompatible_profile() -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        with pytest.raises(EngineValidationError):
            _start(db, TODDLER_PROFILE_ID)
        state = _start(db, OLDER_PROFILE_ID)
    assert state.profile_id == OLDER_PROFILE_ID


def test_start_session_validates_character_pool() -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        with pytest.raises(EngineValidationError):
            _start(db, character_id="char-knight")
        with pytest.raises(EngineValidationError):
            _start(db, character_id="char-teen")
        with pytest.raises(EngineNotFoundError):
            _start(db, character_id="char-missing")
        state = _start(db, character_id="char-explorer")
    assert state.character_id == "char-explorer"


def test_forest_choice_pause_resume_and_stale_version() -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        state = _start(db)
        outcome = session_service.make_choice(db, state.id, "C1", now=at(1))
        after_choice = outcome.session

        assert after_choice.current_scene_id == "forest"
        assert after_choice.compass_values["courage"] == 15.0
        assert [entry["choice_id"] for entry in after_choice.choice_history] == ["C1"]
        assert after_choice.echo_log[0]["echo_type"] == "bravery"
        assert after_choice.compass_history[0]["delta"] == 15.0
        assert after_choice.version == 2
        assert outcome.new_achievements == []

        session_service.pause_session(db, state.id, now=at(2))
        session_service.resume_session(db, state.id, now=at(12))
        stats = session_service.get_session_stats(db, state.id, now=at(13))
        assert stats.elapsed_seconds == 180.0

        with pytest.raises(SessionConcurrencyError):
            session_service.make_choice(db, state.id, "C1", expected_version=2, now=at(14))

        reloaded = session_service.get_session(db, state.id)
    assert reloaded.compass_values["courage"] == 15.0
    assert len(reloaded.choice_history) == 1
    assert reloaded.version == 4


def test_stale_write_loses_race_and_keeps_winner() -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        state = _start(db)
        session_service.make_choice(db, state.id, "C1", now=at(1))

    with db_session.SessionLocal() as reader:
        with reader.begin():
            stale = read_session(reader, state.id)

    with db_session.SessionLocal() as db:
        session_service.make_choice(db, state.id, "F2", now=at(2))

    stale.compass_values["courage"] = 30.0
    with db_session.SessionLocal() as writer:
        with pytest.raises(SessionConcurrencyError):
            with writer.begin():
                write_session(writer, stale, expected_version=stale.version)

    with db_session.SessionLocal() as db:
        reloaded = session_service.get_session(db, state.id)
    assert reloaded.compass_values == {"courage": 10.0, "kindness": 5.0}
    assert reloaded.current_scene_id == "meadow"
    assert reloaded.version == 3


def test_choice_rejected_when_paused_or_completed() -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        state = _start(db)
        paused = session_service.pause_session(db, state.id, now=at(1))
        with pytest.raises(InvalidSessionOperationError):
            session_service.make_choice(db, state.id, "C1", now=at(2))
        unchanged = session_service.get_session(db, state.id)
        assert unchanged.version == paused.version
        assert unchanged.choice_history == []
        assert unchanged.status == SessionStatus.PAUSED

        session_service.end_session(db, state.id, now=at(3))
        with pytest.raises(InvalidSessionOperationError):
            session_service.make_choice(db, state.id, "C1", now=at(4))
        with pytest.raises(InvalidSessionOperationError):
            session_service.pause_session(db, state.id, now=at(4))
        with pytest.raises(InvalidSessionOperationError):
            session_service.resume_session(db, state.id, now=at(4))


def test_unknown_choice_is_validation_error() -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        state = _start(db)
        with pytest.raises(EngineValidationError):
            session_service.make_choice(db, state.id, "F1", now=at(1))
        reloaded = session_service.get_session(db, state.id)
    assert reloaded.version == 1
    assert reloaded.current_scene_id == "entry"


def test_conditional_route_reads_value_after_choice() -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        brave = _start(db)
        session_service.make_choice(db, brave.id, "C1", now=at(1))
        outcome = session_service.make_choice(db, brave.id, "F1", now=at(3))

        shy = _start(db, minutes=5)
        session_service.progress_session_scene(db, shy.id, "forest", now=at(6))
        shy_outcome = session_service.make_choice(db, shy.id, "F1", now=at(7))

    finished = outcome.session
    assert finished.compass_values["courage"] == 55.0
    assert finished.current_scene_id == "brave_end"
    assert finished.status == SessionStatus.COMPLETED
    assert finished.end_time == at(3)
    assert finished.elapsed_seconds == 180.0
    assert [item.badge_id for item in outcome.new_achievements] == ["brave_heart"]

    assert shy_outcome.session.compass_values["courage"] == 40.0
    assert shy_outcome.session.current_scene_id == "meadow"
    assert shy_outcome.session.status == SessionStatus.IN_PROGRESS


def test_end_session_is_idempotent() -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        state = _start(db)
        first = session_service.end_session(db, state.id, now=at(5))
        second = session_service.end_session(db, state.id, now=at(9))

    assert first.session.status == SessionStatus.COMPLETED
    assert first.session.elapsed_seconds == 300.0
    assert second.session.end_time == at(5)
    assert second.session.version == first.session.version
    assert second.new_achievements == []


def test_end_session_after_concurrent_completion_is_noop(monkeypatch: pytest.MonkeyPatch) -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        state = _start(db)
        session_service.make_choice(db, state.id, "C1", now=at(1))
        stale = session_service.get_session(db, state.id)
        finished = session_service.make_choice(db, state.id, "F1", now=at(2)).session

        def _no_write(*args, **kwargs):
            raise AssertionError("ending a completed session must not write")

        monkeypatch.setattr(session_service, "get_session", lambda *args, **kwargs: stale)
        monkeypatch.setattr(session_service, "write_session", _no_write)
        outcome = session_service.end_session(db, state.id, now=at(9))

    assert stale.status == SessionStatus.IN_PROGRESS
    assert outcome.session.status == SessionStatus.COMPLETED
    assert outcome.session.version == finished.version
    assert outcome.session.end_time == at(2)
    assert outcome.new_achievements == []


def test_end_session_from_paused_excludes_open_pause() -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        state = _start(db)
        session_service.pause_session(db, state.id, now=at(4))
        outcome = session_service.end_session(db, state.id, now=at(20))
    assert outcome.session.elapsed_seconds == 240.0
    assert outcome.session.paused_at is None


def test_progress_scene_appends_marker_without_side_effects() -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        state = _start(db)
        moved = session_service.progress_session_scene(db, state.id, "meadow", now=at(1))

        assert moved.current_scene_id == "meadow"
        assert moved.choice_history[-1]["choice_id"] == "__progress__:meadow"
        assert moved.choice_history[-1]["kind"] == "scene_override"
        assert moved.echo_log == []
        assert moved.compass_history == []
        assert moved.compass_values == {"courage": 0.0, "kindness": 0.0}

        session_service.pause_session(db, state.id, now=at(2))
        terminal = session_service.progress_session_scene(db, state.id, "home_end", now=at(3))
        assert terminal.current_scene_id == "home_end"
        assert terminal.status == SessionStatus.PAUSED

        with pytest.raises(EngineValidationError):
            session_service.progress_session_scene(db, state.id, "attic", now=at(4))

        session_service.end_session(db, state.id, now=at(5))
        with pytest.raises(InvalidSessionOperationError):
            session_service.progress_session_scene(db, state.id, "entry", now=at(6))


def test_select_character_rules() -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        state = _start(db)
        selected = session_service.select_character(db, state.id, "char-explorer", now=at(1))
        assert selected.character_id == "char-explorer"
        assert selected.version == 2

        with pytest.raises(EngineValidationError):
            session_service.select_character(db, state.id, "char-knight", now=at(2))
        with pytest.raises(EngineValidationError):
            session_service.select_character(db, state.id, "char-teen", now=at(2))
        with pytest.raises(EngineNotFoundError):
            session_service.select_character(db, state.id, "char-missing", now=at(2))

        session_service.end_session(db, state.id, now=at(3))
        with pytest.raises(InvalidSessionOperationError):
            session_service.select_character(db, state.id, "char-explorer", now=at(4))


def test_missing_session_raises_not_found() -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        with pytest.raises(EngineNotFoundError):
            session_service.get_session(db, "nope")
        with pytest.raises(EngineNotFoundError):
            session_service.make_choice(db, "nope", "C1")
        with pytest.raises(EngineNotFoundError):
            session_service.end_session(db, "nope")


def test_session_listings_are_newest_first() -> None:
    seed_forest_world()
    with db_session.SessionLocal() as db:
        kid = _start(db, KID_PROFILE_ID, minutes=0)
        older = _start(db, OLDER_PROFILE_ID, minutes=1)
        other = _start(db, OTHER_ACCOUNT_PROFILE_ID, minutes=2)
        session_service.end_session(db, older.id, now=at(3))
        session_service.pause_session(db, kid.id, now=at(4))

        by_account = session_service.list_sessions_by_account(db, ACCOUNT_ID)
        in_progress = session_service.list_in_progress_sessions(db, ACCOUNT_ID)
        by_profile = session_service.list_sessions_by_profile(db, OTHER_ACCOUNT_PROFILE_ID)
        limited = session_service.list_sessions_by_account(db, ACCOUNT_ID, limit=1)

    assert [item.id for item in by_account] == [older.id, kid.id]
    assert [item.id for item in in_progress] == [kid.id]
    assert [item.id for item in by_profile] == [other.id]
    assert [item.id for item in limited] == [older.id]


def test_storage_failure_surfaces_as_storage_unavailable() -> None:
    seed_forest_world()
    Base.metadata.tables["session_achievements"].drop(bind=db_session.engine)
    Base.metadata.tables["game_sessions"].drop(bind=db_session.engine)
    with db_session.SessionLocal() as db:
        with pytest.raises(StorageUnavailableError):
            session_service.get_session(db, "any")
        with pytest.raises(StorageUnavailableError):
            _start(db)


def test_committed_choice_survives_failed_achievement_pass(monkeypatch: pytest.MonkeyPatch) -> None:
    seed_forest_world()

    def _broken_award(*args, **kwargs):
        raise OperationalError("INSERT INTO session_achievements", {}, Exception("disk I/O error"))

    with db_session.SessionLocal() as db:
        state = _start(db)
        monkeypatch.setattr(session_service, "evaluate_and_award", _broken_award)
        chosen = session_service.make_choice(db, state.id, "C1", now=at(1))
        after_choice = session_service.get_session(db, state.id)
        ended = session_service.end_session(db, state.id, now=at(2))
        after_end = session_service.get_session(db, state.id)

    assert chosen.new_achievements == []
    assert chosen.session.version == 2
    assert after_choice.version == 2
    assert after_choice.compass_values["courage"] == 15.0
    assert len(after_choice.choice_history) == 1
    assert after_choice.current_scene_id == "forest"

    assert ended.new_achievements == []
    assert ended.session.status == SessionStatus.COMPLETED
    assert after_end.status == SessionStatus.COMPLETED
    assert after_end.version == 3
