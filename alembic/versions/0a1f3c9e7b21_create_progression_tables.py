"""Create characters, habits, goals and experience_log tables

Revision ID: 0a1f3c9e7b21
Revises:
Create Date: 2026-10-19 09:12:40.118204

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0a1f3c9e7b21'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- characters ---
    op.create_table(
        "characters",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(30), nullable=False, server_default=""),
        sa.Column("level", sa.Integer, nullable=False, server_default="1"),
        sa.Column("experience", sa.Integer, nullable=False, server_default="0"),
        sa.Column("attributes", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("custom_attributes", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("achievements", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("accessories", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_characters_user", "characters", ["user_id"])

    # --- habits ---
    op.create_table(
        "habits",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column(
            "character_id", sa.String(36),
            sa.ForeignKey("characters.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("frequency", sa.String(16), nullable=False),
        sa.Column("completed_dates", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("current_streak", sa.Integer, nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer, nullable=False, server_default="0"),
        sa.Column("attribute_type", sa.String(50), nullable=False),
        sa.Column("is_custom_attribute", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("experience_reward", sa.Integer, nullable=False, server_default="10"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_habits_user", "habits", ["user_id"])

    # --- goals ---
    op.create_table(
        "goals",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column(
            "character_id", sa.String(36),
            sa.ForeignKey("characters.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("progress", sa.Integer, nullable=False, server_default="0"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attribute_type", sa.String(50), nullable=False),
        sa.Column("is_custom_attribute", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("experience_reward", sa.Integer, nullable=False, server_default="50"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_goals_user", "goals", ["user_id"])

    # --- experience_log (append-only) ---
    op.create_table(
        "experience_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("character_id", sa.String(36), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("source_kind", sa.String(16), nullable=False),
        sa.Column("leveled_up", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("source_event_id", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_experience_log_character", "experience_log", ["character_id", "created_at"],
    )
    # Idempotency key; NULLs (manual grants) are not constrained
    op.create_index(
        "ix_experience_log_source", "experience_log", ["source_event_id"], unique=True,
    )


def downgrade() -> None:
    op.drop_index("ix_experience_log_source", table_name="experience_log")
    op.drop_index("ix_experience_log_character", table_name="experience_log")
    op.drop_table("experience_log")
    op.drop_index("ix_goals_user", table_name="goals")
    op.drop_table("goals")
    op.drop_index("ix_habits_user", table_name="habits")
    op.drop_table("habits")
    op.drop_index("ix_characters_user", table_name="characters")
    op.drop_table("characters")
