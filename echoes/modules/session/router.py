from __future__ import annotations

from collections.abc import Callable
from time import perf_counter
from typing import TypeVar

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from echoes.db.session import get_db
from echoes.errors import (
    EngineNotFoundError,
    EngineValidationError,
    InvalidSessionOperationError,
    SessionConcurrencyError,
    StorageUnavailableError,
)
from echoes.modules.session import service as session_service
from echoes.modules.session.schemas import (
    AchievementOut,
    CharacterSelectRequest,
    ChoiceRequest,
    GameSessionOut,
    SceneProgressRequest,
    SessionCreateRequest,
    SessionListResponse,
    SessionOutcomeResponse,
    SessionStatsResponse,
)
from echoes.modules.session.service import SessionOutcome
from echoes.modules.session.state import SessionState
from echoes.modules.telemetry.service import record_operation_failure, record_operation_success
from echoes.utils.time import utc_now_naive

router = APIRouter(prefix="/api/v1", tags=["sessions"])

T = TypeVar("T")


def _http_error(operation: str, status_code: int, code: str, exc: Exception) -> HTTPException:
    record_operation_failure(operation=operation, error_code=code)
    return HTTPException(status_code=status_code, detail={"code": code, "message": str(exc)})


def _run(operation: str, call: Callable[[], T]) -> T:
    started = perf_counter()
    try:
        result = call()
    except EngineNotFoundError as exc:
        raise _http_error(operation, 404, "NOT_FOUND", exc) from exc
    except SessionConcurrencyError as exc:
        raise _http_error(operation, 409, "CONCURRENCY_CONFLICT", exc) from exc
    except InvalidSessionOperationError as exc:
        raise _http_error(operation, 409, "INVALID_OPERATION", exc) from exc
    except EngineValidationError as exc:
        raise _http_error(operation, 422, "VALIDATION_ERROR", exc) from exc
    except StorageUnavailableError as exc:
        raise _http_error(operation, 503, "STORAGE_UNAVAILABLE", exc) from exc

    badges_unlocked = len(result.new_achievements) if isinstance(result, SessionOutcome) else 0
    record_operation_success(
        operation=operation,
        latency_ms=(perf_counter() - started) * 1000.0,
        badges_unlocked=badges_unlocked,
    )
    return result


def _parse_if_match(raw: str | None) -> int | None:
    cleaned = str(raw or "").strip()
    if not cleaned:
        return None
    if cleaned.startswith("W/"):
        cleaned = cleaned[2:]
    cleaned = cleaned.strip('"')
    try:
        expected = int(cleaned)
    except ValueError as exc:
        raise EngineValidationError("If-Match must carry a session version number") from exc
    if expected < 1:
        raise EngineValidationError("If-Match must carry a session version number")
    return expected


def _session_out(state: SessionState, response: Response | None = None) -> GameSessionOut:
    if response is not None:
        response.headers["ETag"] = f'"{state.version}"'
    return GameSessionOut.from_state(state, now=utc_now_naive())


def _outcome_out(outcome: SessionOutcome, response: Response) -> SessionOutcomeResponse:
    return SessionOutcomeResponse(
        session=_session_out(outcome.session, response),
        new_achievements=[AchievementOut.from_unlocked(item) for item in outcome.new_achievements],
    )


@router.post("/sessions", response_model=GameSessionOut, status_code=status.HTTP_201_CREATED)
def start_session_api(
    payload: SessionCreateRequest,
    response: Response,
    db: Session = Depends(get_db),
) -> GameSessionOut:
    state = _run(
        "start_session",
        lambda: session_service.start_session(
            db,
            scenario_id=payload.scenario_id,
            profile_id=payload.profile_id,
            character_id=payload.character_id,
        ),
    )
    return _session_out(state, response)


@router.get("/sessions/{session_id}", response_model=GameSessionOut)
def get_session_api(session_id: str, response: Response, db: Session = Depends(get_db)) -> GameSessionOut:
    state = _run("get_session", lambda: session_service.get_session(db, session_id))
    return _session_out(state, response)


@router.post("/sessions/{session_id}/choices", response_model=SessionOutcomeResponse)
def make_choice_api(
    session_id: str,
    payload: ChoiceRequest,
    response: Response,
    db: Session = Depends(get_db),
    if_match: str | None = Header(default=None, alias="If-Match"),
) -> SessionOutcomeResponse:
    outcome = _run(
        "make_choice",
        lambda: session_service.make_choice(
            db,
            session_id,
            payload.choice_id,
            expected_version=_parse_if_match(if_match),
        ),
    )
    return _outcome_out(outcome, response)


@router.post("/sessions/{session_id}/pause", response_model=GameSessionOut)
def pause_session_api(session_id: str, response: Response, db: Session = Depends(get_db)) -> GameSessionOut:
    state = _run("pause_session", lambda: session_service.pause_session(db, session_id))
    return _session_out(state, response)


@router.post("/sessions/{session_id}/resume", response_model=GameSessionOut)
def resume_session_api(session_id: str, response: Response, db: Session = Depends(get_db)) -> GameSessionOut:
    state = _run("resume_session", lambda: session_service.resume_session(db, session_id))
    return _session_out(state, response)


@router.post("/sessions/{session_id}/end", response_model=SessionOutcomeResponse)
def end_session_api(session_id: str, response: Response, db: Session = Depends(get_db)) -> SessionOutcomeResponse:
    outcome = _run("end_session", lambda: session_service.end_session(db, session_id))
    return _outcome_out(outcome, response)


@router.post("/sessions/{session_id}/progress-scene", response_model=GameSessionOut)
def progress_session_scene_api(
    session_id: str,
    payload: SceneProgressRequest,
    response: Response,
    db: Session = Depends(get_db),
) -> GameSessionOut:
    state = _run(
        "progress_session_scene",
        lambda: session_service.progress_session_scene(db, session_id, payload.scene_id),
    )
    return _session_out(state, response)


@router.post("/sessions/{session_id}/character", response_model=GameSessionOut)
def select_character_api(
    session_id: str,
    payload: CharacterSelectRequest,
    response: Response,
    db: Session = Depends(get_db),
) -> GameSessionOut:
    state = _run(
        "select_character",
        lambda: session_service.select_character(db, session_id, payload.character_id),
    )
    return _session_out(state, response)


@router.get("/sessions/{session_id}/stats", response_model=SessionStatsResponse)
def get_session_stats_api(session_id: str, db: Session = Depends(get_db)) -> SessionStatsResponse:
    stats = _run("get_session_stats", lambda: session_service.get_session_stats(db, session_id))
    return SessionStatsResponse.from_stats(stats)


@router.get("/sessions/{session_id}/achievements", response_model=list[AchievementOut])
def get_achievements_api(session_id: str, db: Session = Depends(get_db)) -> list[AchievementOut]:
    items = _run("get_achievements", lambda: session_service.get_achievements(db, session_id))
    return [AchievementOut.from_unlocked(item) for item in items]


@router.get("/accounts/{account_id}/sessions", response_model=SessionListResponse)
def list_sessions_by_account_api(
    account_id: str,
    limit: int | None = Query(default=None, ge=1, le=200),
    db: Session = Depends(get_db),
) -> SessionListResponse:
    states = _run("list_sessions_by_account", lambda: session_service.list_sessions_by_account(db, account_id, limit=limit))
    return SessionListResponse(sessions=[_session_out(state) for state in states])


@router.get("/accounts/{account_id}/sessions/in-progress", response_model=SessionListResponse)
def list_in_progress_sessions_api(
    account_id: str,
    limit: int | None = Query(default=None, ge=1, le=200),
    db: Session = Depends(get_db),
) -> SessionListResponse:
    states = _run(
        "list_in_progress_sessions",
        lambda: session_service.list_in_progress_sessions(db, account_id, limit=limit),
    )
    return SessionListResponse(sessions=[_session_out(state) for state in states])


@router.get("/profiles/{profile_id}/sessions", response_model=SessionListResponse)
def list_sessions_by_profile_api(
    profile_id: str,
    limit: int | None = Query(default=None, ge=1, le=200),
    db: Session = Depends(get_db),
) -> SessionListResponse:
    states = _run("list_sessions_by_profile", lambda: session_service.list_sessions_by_profile(db, profile_id, limit=limit))
    return SessionListResponse(sessions=[_session_out(state) for state in states])
