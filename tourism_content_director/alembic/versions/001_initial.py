"""initial

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("place_id", sa.String(255), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("city", sa.String(128), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lng", sa.Float(), nullable=False),
        sa.Column("location_type", sa.String(32), server_default="place", nullable=False),
        sa.Column("budget", sa.String(16), server_default="medium", nullable=False),
        sa.Column("website", sa.String(512), nullable=True),
        sa.Column("phone", sa.String(64), nullable=True),
        sa.Column("categories", JSON, nullable=False),
        sa.Column("tags", JSON, nullable=False),
        sa.Column("photo_urls", JSON, nullable=False),
        sa.Column("descriptions", JSON, nullable=False),
        sa.Column("historical_context", JSON, nullable=False),
        sa.Column("enrichment", JSON, nullable=False),
        sa.Column("ai_generated", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("needs_ai_regeneration", sa.Boolean(), server_default=sa.false(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("place_id"),
    )
    op.create_index("ix_locations_city", "locations", ["city"])

    op.create_table(
        "experiences",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("city", sa.String(128), nullable=True),
        sa.Column("category_key", sa.String(64), nullable=True),
        sa.Column("estimated_duration", sa.Integer(), nullable=True),
        sa.Column("seasons", JSON, nullable=False),
        sa.Column("titles", JSON, nullable=False),
        sa.Column("descriptions", JSON, nullable=False),
        sa.Column("theme_reasoning", sa.Text(), nullable=True),
        sa.Column("cover_photo_url", sa.String(1024), nullable=True),
        sa.Column("kind", sa.String(16), server_default="local", nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("ai_generated", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("needs_ai_regeneration", sa.Boolean(), server_default=sa.false(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_experiences_city", "experiences", ["city"])

    op.create_table(
        "experience_locations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("experience_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), server_default="1", nullable=False),
        sa.ForeignKeyConstraint(["experience_id"], ["experiences.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("experience_id", "location_id", name="uq_experience_locations_experience_location"),
    )
    op.create_index("ix_experience_locations_experience_id", "experience_locations", ["experience_id"])
    op.create_index("ix_experience_locations_location_id", "experience_locations", ["location_id"])

    op.create_table(
        "plans",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("city_name", sa.String(128), nullable=True),
        sa.Column("duration_days", sa.Integer(), server_default="1", nullable=False),
        sa.Column("titles", JSON, nullable=False),
        sa.Column("notes", JSON, nullable=False),
        sa.Column("preferences", JSON, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_plans_city_name", "plans", ["city_name"])
    op.create_index("ix_plans_user_id", "plans", ["user_id"])

    op.create_table(
        "plan_experiences",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("experience_id", sa.Integer(), nullable=False),
        sa.Column("day_number", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), server_default="1", nullable=False),
        sa.ForeignKeyConstraint(["plan_id"], ["plans.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["experience_id"], ["experiences.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("plan_id", "experience_id", "day_number", name="uq_plan_experiences_plan_experience_day"),
    )
    op.create_index("ix_plan_experiences_plan_id", "plan_experiences", ["plan_id"])
    op.create_index("ix_plan_experiences_experience_id", "plan_experiences", ["experience_id"])

    op.create_table(
        "settings",
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("value", JSON, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("key"),
    )

    op.create_table(
        "job_locks",
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("owner", sa.String(64), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )


def downgrade() -> None:
    op.drop_table("job_locks")
    op.drop_table("settings")
    op.drop_index("ix_plan_experiences_experience_id", table_name="plan_experiences")
    op.drop_index("ix_plan_experiences_plan_id", table_name="plan_experiences")
    op.drop_table("plan_experiences")
    op.drop_index("ix_plans_user_id", table_name="plans")
    op.drop_index("ix_plans_city_name", table_name="plans")
    op.drop_table("plans")
    op.drop_index("ix_experience_locations_location_id", table_name="experience_locations")
    op.drop_index("ix_experience_locations_experience_id", table_name="experience_locations")
    op.drop_table("experience_locations")
    op.drop_index("ix_experiences_city", table_name="experiences")
    op.drop_table("experiences")
    op.drop_index("ix_locations_city", table_name="locations")
    op.drop_table("locations")
