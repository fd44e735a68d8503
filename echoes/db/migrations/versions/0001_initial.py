"""initial session engine schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

from echoes.db.types import JSONType


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "scenarios",
        sa.Column("scenario_id", sa.String(length=128), primary_key=True),
        sa.Column("title", sa.String(length=256), nullable=False),
        sa.Column("age_group", sa.String(length=16), nullable=False),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("graph_json", JSONType, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_scenarios_age_group", "scenarios", ["age_group"])
    op.create_index("ix_scenarios_is_published", "scenarios", ["is_published"])

    op.create_table(
        "user_profiles",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("account_id", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=128), nullable=False),
        sa.Column("age_group", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_user_profiles_account_id", "user_profiles", ["account_id"])

    op.create_table(
        "characters",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("archetype", sa.String(length=64), nullable=False),
        sa.Column("age_group", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_characters_archetype", "characters", ["archetype"])
    op.create_index("ix_characters_age_group", "characters", ["age_group"])

    op.create_table(
        "badge_configurations",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("title", sa.String(length=128), nullable=False),
        sa.Column("axis", sa.String(length=64), nullable=False),
        sa.Column("threshold", sa.Float(), nullable=False),
        sa.Column("direction", sa.String(length=8), nullable=False),
        sa.Column("age_group", sa.String(length=16), nullable=True),
        sa.Column("tier_order", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_badge_configurations_axis", "badge_configurations", ["axis"])
    op.create_index("ix_badge_configurations_age_group", "badge_configurations", ["age_group"])

    op.create_table(
        "game_sessions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("scenario_id", sa.String(length=128), sa.ForeignKey("scenarios.scenario_id"), nullable=False),
        sa.Column("profile_id", sa.String(length=36), sa.ForeignKey("user_profiles.id"), nullable=False),
        sa.Column("account_id", sa.String(length=64), nullable=False),
        sa.Column("character_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("current_scene_id", sa.String(length=128), nullable=False),
        sa.Column("choice_history", JSONType, nullable=False),
        sa.Column("echo_log", JSONType, nullable=False),
        sa.Column("compass_values", JSONType, nullable=False),
        sa.Column("compass_history", JSONType, nullable=False),
        sa.Column("scene_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("active_since", sa.DateTime(), nullable=True),
        sa.Column("elapsed_seconds", sa.Float(), nullable=False, server_default="0"),
        sa.Column("paused_at", sa.DateTime(), nullable=True),
        sa.Column("end_time", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_game_sessions_scenario_id", "game_sessions", ["scenario_id"])
    op.create_index("ix_game_sessions_profile_id", "game_sessions", ["profile_id"])
    op.create_index("ix_game_sessions_account_id", "game_sessions", ["account_id"])
    op.create_index("ix_game_sessions_status", "game_sessions", ["status"])
    op.create_index("ix_game_sessions_created_at", "game_sessions", ["created_at"])
    op.create_index("ix_game_sessions_account_created", "game_sessions", ["account_id", "created_at"])

    op.create_table(
        "session_achievements",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("profile_id", sa.String(length=36), nullable=False),
        sa.Column("badge_id", sa.String(length=64), nullable=False),
        sa.Column("session_id", sa.String(length=36), sa.ForeignKey("game_sessions.id"), nullable=False),
        sa.Column("axis", sa.String(length=64), nullable=False),
        sa.Column("trigger_value", sa.Float(), nullable=False),
        sa.Column("threshold", sa.Float(), nullable=False),
        sa.Column("unlocked_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("profile_id", "badge_id", name="uq_session_achievements_profile_badge"),
    )
    op.create_index("ix_session_achievements_profile_id", "session_achievements", ["profile_id"])
    op.create_index("ix_session_achievements_session_id", "session_achievements", ["session_id"])


def downgrade() -> None:
    op.drop_table("session_achievements")
    op.drop_table("game_sessions")
    op.drop_table("badge_configurations")
    op.drop_table("characters")
    op.drop_table("user_profiles")
    op.drop_table("scenarios")
