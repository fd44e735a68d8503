from contextlib import asynccontextmanager

from fastapi import FastAPI

from echoes.config import ensure_dev_database_schema, settings
from echoes.db import session as db_session
from echoes.modules.session.router import router as session_router
from echoes.modules.telemetry.router import router as telemetry_router


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    if settings.env == "dev":
        ensure_dev_database_schema(str(db_session.engine.url))
    yield


app = FastAPI(title="Echoes Session Engine", lifespan=_lifespan)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(session_router)
app.include_router(telemetry_router)
