from __future__ import annotations

from fastapi import APIRouter

from echoes.modules.telemetry.service import get_session_telemetry_summary

router = APIRouter(prefix="/api/v1/telemetry", tags=["telemetry"])


@router.get("/runtime")
def runtime_telemetry() -> dict:
    return get_session_telemetry_summary()
