from echoes.db import session as db_session
from echoes.db.base import Base
from echoes.db.models import (  # noqa: F401
    BadgeConfiguration,
    Character,
    GameSession,
    Scenario,
    SessionAchievement,
    UserProfile,
)


def init_db() -> None:
    Base.metadata.create_all(bind=db_session.engine)
