from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from echoes.modules.achievements.evaluator import UnlockedAchievement
from echoes.modules.session.state import SessionState
from echoes.modules.session.stats import SessionStats


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SessionCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    scenario_id: str = Field(min_length=1)
    profile_id: str = Field(min_length=1)
    character_id: str | None = None


class ChoiceRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    choice_id: str = Field(min_length=1)


class SceneProgressRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    scene_id: str = Field(min_length=1)


class CharacterSelectRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    character_id: str = Field(min_length=1)


class ChoiceRecordOut(BaseModel):
    choice_id: str
    scene_id: str
    next_scene_id: str
    kind: str = "choice"
    chosen_at: str


class EchoOut(BaseModel):
    choice_id: str
    echo_type: str
    strength: float
    recorded_at: str


class CompassChangeOut(BaseModel):
    axis: str
    delta: float
    requested_delta: float
    resulting_value: float
    choice_id: str
    choice_index: int
    recorded_at: str


class GameSessionOut(BaseModel):
    session_id: str
    scenario_id: str
    profile_id: str
    account_id: str
    character_id: str | None = None
    status: str
    current_scene_id: str
    scene_count: int
    choice_history: list[ChoiceRecordOut]
    echo_log: list[EchoOut]
    compass_values: dict[str, float]
    compass_history: list[CompassChangeOut]
    start_time: datetime
    end_time: datetime | None = None
    paused_at: datetime | None = None
    elapsed_seconds: float
    version: int

    @field_serializer("start_time", "end_time", "paused_at")
    def serialize_utc_datetime(self, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @classmethod
    def from_state(cls, state: SessionState, *, now: datetime | None = None) -> GameSessionOut:
        return cls(
            session_id=state.id,
            scenario_id=state.scenario_id,
            profile_id=state.profile_id,
            account_id=state.account_id,
            character_id=state.character_id,
            status=state.status.value,
            current_scene_id=state.current_scene_id,
            scene_count=state.scene_count,
            choice_history=[ChoiceRecordOut.model_validate(item) for item in state.choice_history],
            echo_log=[EchoOut.model_validate(item) for item in state.echo_log],
            compass_values=dict(state.compass_values),
            compass_history=[CompassChangeOut.model_validate(item) for item in state.compass_history],
            start_time=state.start_time,
            end_time=state.end_time,
            paused_at=state.paused_at,
            elapsed_seconds=round(state.total_elapsed_seconds(now), 3),
            version=state.version,
        )


class AchievementOut(BaseModel):
    badge_id: str
    title: str
    kind: str = "compass_threshold"
    axis: str
    trigger_value: float
    threshold: float
    profile_id: str
    session_id: str
    unlocked_at: datetime

    @field_serializer("unlocked_at")
    def serialize_utc_datetime(self, value: datetime) -> datetime:
        return _as_utc(value)

    @classmethod
    def from_unlocked(cls, item: UnlockedAchievement) -> AchievementOut:
        return cls(
            badge_id=item.badge_id,
            title=item.title,
            kind=item.kind,
            axis=item.axis,
            trigger_value=item.trigger_value,
            threshold=item.threshold,
            profile_id=item.profile_id,
            session_id=item.session_id,
            unlocked_at=item.unlocked_at,
        )


class SessionOutcomeResponse(BaseModel):
    session: GameSessionOut
    new_achievements: list[AchievementOut] = Field(default_factory=list)


class CompassPointOut(BaseModel):
    choice_index: int
    choice_id: str
    values: dict[str, float]


class SessionStatsResponse(BaseModel):
    session_id: str
    total_choices: int
    echo_counts: dict[str, int]
    echo_strength_totals: dict[str, float]
    scenes_visited: int
    reachable_scenes: int
    completion_ratio: float
    elapsed_seconds: float
    compass_values: dict[str, float]
    compass_timeline: list[CompassPointOut] = Field(default_factory=list)
    recent_echoes: list[EchoOut] = Field(default_factory=list)
    achievements: list[AchievementOut] = Field(default_factory=list)

    @classmethod
    def from_stats(cls, stats: SessionStats) -> SessionStatsResponse:
        return cls(
            session_id=stats.session_id,
            total_choices=stats.total_choices,
            echo_counts=dict(stats.echo_counts),
            echo_strength_totals=dict(stats.echo_strength_totals),
            scenes_visited=stats.scenes_visited,
            reachable_scenes=stats.reachable_scenes,
            completion_ratio=stats.completion_ratio,
            elapsed_seconds=round(stats.elapsed_seconds, 3),
            compass_values=dict(stats.compass_values),
            compass_timeline=[CompassPointOut.model_validate(item) for item in stats.compass_timeline],
            recent_echoes=[EchoOut.model_validate(item) for item in stats.recent_echoes],
            achievements=[AchievementOut.from_unlocked(item) for item in stats.achievements],
        )


class SessionListResponse(BaseModel):
    sessions: list[GameSessionOut]
