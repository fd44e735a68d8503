from __future__ import annotations

from pathlib import Path

import pytest

from echoes.config import settings
from echoes.db import session as db_session
from echoes.db.base import Base
from echoes.db.bootstrap import init_db
from echoes.modules.telemetry.service import reset_session_telemetry


@pytest.fixture(autouse=True)
def _reset_db_and_defaults(tmp_path: Path) -> None:
    settings.compass_min = -100.0
    settings.compass_max = 100.0
    settings.compass_default_baseline = 0.0
    settings.max_compass_axes = 4
    settings.max_character_archetypes = 4
    settings.default_age_group = "6-9"
    settings.session_list_limit = 50
    db_session.rebind_engine(f"sqlite+pysqlite:///{tmp_path / 'engine.db'}")
    reset_session_telemetry()
    Base.metadata.drop_all(bind=db_session.engine)
    init_db()
    yield
    reset_session_telemetry()
    Base.metadata.drop_all(bind=db_session.engine)
    db_session.engine.dispose()
