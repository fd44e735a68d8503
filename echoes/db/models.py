import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from echoes.db.base import Base
from echoes.db.types import JSONType
from echoes.utils.time import utc_now_naive


def _new_id() -> str:
    return str(uuid.uuid4())


class Scenario(Base):
    __tablename__ = "scenarios"

    scenario_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    title: Mapped[str] = mapped_column(String(256), default="")
    age_group: Mapped[str] = mapped_column(String(16), index=True)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    graph_json: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, onupdate=utc_now_naive)


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(String(64), index=True)
    display_name: Mapped[str] = mapped_column(String(128), default="")
    age_group: Mapped[str] = mapped_column(String(16))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class Character(Base):
    __tablename__ = "characters"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(128))
    archetype: Mapped[str] = mapped_column(String(64), index=True)
    age_group: Mapped[str] = mapped_column(String(16), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class BadgeConfiguration(Base):
    __tablename__ = "badge_configurations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(128), default="")
    axis: Mapped[str] = mapped_column(String(64), index=True)
    threshold: Mapped[float] = mapped_column(Float)
    direction: Mapped[str] = mapped_column(String(8), default="gte")
    age_group: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    tier_order: Mapped[int] = mapped_column(Integer, default=0)
    kind: Mapped[str] = mapped_column(String(32), default="compass_threshold", index=True)


class GameSession(Base):
    __tablename__ = "game_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    scenario_id: Mapped[str] = mapped_column(String(128), ForeignKey("scenarios.scenario_id"), index=True)
    profile_id: Mapped[str] = mapped_column(String(36), ForeignKey("user_profiles.id"), index=True)
    account_id: Mapped[str] = mapped_column(String(64), index=True)
    character_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), index=True)
    current_scene_id: Mapped[str] = mapped_column(String(128))
    choice_history: Mapped[list] = mapped_column(JSONType, default=list)
    echo_log: Mapped[list] = mapped_column(JSONType, default=list)
    compass_values: Mapped[dict] = mapped_column(JSONType, default=dict)
    compass_history: Mapped[list] = mapped_column(JSONType, default=list)
    scene_count: Mapped[int] = mapped_column(Integer, default=1)
    start_time: Mapped[datetime] = mapped_column(DateTime)
    active_since: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    elapsed_seconds: Mapped[float] = mapped_column(Float, default=0.0)
    paused_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class SessionAchievement(Base):
    __tablename__ = "session_achievements"
    __table_args__ = (
        UniqueConstraint("profile_id", "badge_id", name="uq_session_achievements_profile_badge"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    profile_id: Mapped[str] = mapped_column(String(36), index=True)
    badge_id: Mapped[str] = mapped_column(String(64))
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("game_sessions.id"), index=True)
    axis: Mapped[str] = mapped_column(String(64))
    trigger_value: Mapped[float] = mapped_column(Float)
    threshold: Mapped[float] = mapped_column(Float)
    unlocked_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


Index("ix_game_sessions_account_created", GameSession.account_id, GameSession.created_at)
