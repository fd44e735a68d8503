"""add badge kind to badge configurations

Revision ID: 0002_badge_kinds
Revises: 0001_initial
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_badge_kinds"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "badge_configurations",
        sa.Column("kind", sa.String(length=32), nullable=False, server_default="compass_threshold"),
    )
    op.create_index("ix_badge_configurations_kind", "badge_configurations", ["kind"])


def downgrade() -> None:
    op.drop_index("ix_badge_configurations_kind", table_name="badge_configurations")
    with op.batch_alter_table("badge_configurations") as batch_op:
        batch_op.drop_column("kind")
