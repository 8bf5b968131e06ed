"""create academy schema

Revision ID: 3f9a1c2b7d10
Revises:
Create Date: 2026-10-19 10:12:41.208113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c2b7d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(updated: bool = True) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()))
    return cols


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="student"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False, server_default="general"),
        sa.Column("color", sa.String(length=7), nullable=False, server_default="#3B82F6"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
    )

    op.create_table(
        "exercises",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("duration", sa.Float(), nullable=False, server_default="0"),
        sa.Column("intensity", sa.String(length=10), nullable=False, server_default="medium"),
        sa.Column("work_type", sa.String(length=20), nullable=False, server_default="technique"),
        sa.Column("difficulty", sa.String(length=20), nullable=False, server_default="intermediate"),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("materials", sa.JSON(), nullable=True),
        sa.Column("protection", sa.JSON(), nullable=True),
        sa.Column("instructions", sa.JSON(), nullable=True),
        sa.Column("video_url", sa.String(length=500), nullable=True),
        sa.Column("image_url", sa.String(length=500), nullable=True),
        sa.Column("is_multi_timer", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("timers", sa.JSON(), nullable=True),
        sa.Column("is_template", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("visibility", sa.String(length=10), nullable=False, server_default="private"),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("average_rating", sa.Float(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_exercises_is_template", "exercises", ["is_template"])
    op.create_index("ix_exercises_created_by", "exercises", ["created_by"])
    op.create_index("ix_exercises_work_type_difficulty_active", "exercises", ["work_type", "difficulty", "is_active"])
    op.create_index("ix_exercises_created_by_visibility", "exercises", ["created_by", "visibility"])

    op.create_table(
        "routines",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("objective", sa.Text(), nullable=True),
        sa.Column("total_duration", sa.Float(), nullable=False, server_default="0"),
        sa.Column("difficulty", sa.String(length=20), nullable=False, server_default="intermediate"),
        sa.Column("level", sa.String(length=20), nullable=False, server_default="intermedio"),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("materials", sa.JSON(), nullable=True),
        sa.Column("protection", sa.JSON(), nullable=True),
        sa.Column("is_template", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_favorite", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("visibility", sa.String(length=10), nullable=False, server_default="private"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("repeat_in_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("scheduled_days", sa.JSON(), nullable=True),
        sa.Column("trainer_notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("average_rating", sa.Float(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_routines_is_template", "routines", ["is_template"])
    op.create_index("ix_routines_is_favorite", "routines", ["is_favorite"])
    op.create_index("ix_routines_created_by", "routines", ["created_by"])
    op.create_index("ix_routines_created_by_visibility_active", "routines", ["created_by", "visibility", "is_active"])
    op.create_index("ix_routines_difficulty_level", "routines", ["difficulty", "level"])

    op.create_table(
        "exercise_categories",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("exercise_id", sa.Integer(), sa.ForeignKey("exercises.id", ondelete="CASCADE"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("exercise_id", "category_id", name="uq_exercise_categories"),
    )
    op.create_index("ix_exercise_categories_exercise_id", "exercise_categories", ["exercise_id"])
    op.create_index("ix_exercise_categories_category_id", "exercise_categories", ["category_id"])

    op.create_table(
        "routine_categories",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("routine_id", sa.Integer(), sa.ForeignKey("routines.id", ondelete="CASCADE"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("routine_id", "category_id", name="uq_routine_categories"),
    )
    op.create_index("ix_routine_categories_routine_id", "routine_categories", ["routine_id"])
    op.create_index("ix_routine_categories_category_id", "routine_categories", ["category_id"])

    op.create_table(
        "routine_blocks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("routine_id", sa.Integer(), sa.ForeignKey("routines.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color", sa.String(length=7), nullable=False, server_default="#3B82F6"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("duration", sa.Float(), nullable=False, server_default="0"),
        *_timestamps(updated=False),
        sa.UniqueConstraint("routine_id", "sort_order", name="uq_routine_blocks_routine_sort_order"),
    )
    op.create_index("ix_routine_blocks_routine_id", "routine_blocks", ["routine_id"])

    op.create_table(
        "routine_block_exercises",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "routine_block_id", sa.Integer(),
            sa.ForeignKey("routine_blocks.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("exercise_id", sa.Integer(), sa.ForeignKey("exercises.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("duration_override", sa.Float(), nullable=True),
        sa.Column("exercise_notes", sa.JSON(), nullable=True),
        sa.Column("custom_timers", sa.JSON(), nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint("routine_block_id", "sort_order", name="uq_routine_block_exercises_block_sort_order"),
    )
    op.create_index("ix_routine_block_exercises_routine_block_id", "routine_block_exercises", ["routine_block_id"])
    op.create_index("ix_routine_block_exercises_exercise_id", "routine_block_exercises", ["exercise_id"])

    op.create_table(
        "routine_completions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("routine_id", sa.Integer(), sa.ForeignKey("routines.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("routine_name", sa.String(length=255), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True),
        sa.Column("category_name", sa.String(length=100), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("planned_duration", sa.Float(), nullable=False),
        sa.Column("actual_duration", sa.Float(), nullable=False),
        sa.Column("notes", sa.JSON(), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("morning_session", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("afternoon_session", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_full_day_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("block_completions", sa.JSON(), nullable=True),
        sa.Column("exercise_completions", sa.JSON(), nullable=True),
        sa.Column("completed_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_routine_completions_routine_id", "routine_completions", ["routine_id"])
    op.create_index("ix_routine_completions_category_id", "routine_completions", ["category_id"])
    op.create_index("ix_routine_completions_completed_by", "routine_completions", ["completed_by"])
    op.create_index(
        "ix_routine_completions_routine_completed_at", "routine_completions", ["routine_id", "completed_at"]
    )
    op.create_index(
        "ix_routine_completions_completed_by_completed_at", "routine_completions", ["completed_by", "completed_at"]
    )

    op.create_table(
        "routine_completion_attendees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "routine_completion_id", sa.Integer(),
            sa.ForeignKey("routine_completions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("participation_minutes", sa.Float(), nullable=False, server_default="0"),
        sa.Column("performance_notes", sa.JSON(), nullable=True),
        sa.Column("completed_full_session", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
        sa.UniqueConstraint("routine_completion_id", "student_id", name="uq_completion_attendee_student"),
    )
    op.create_index(
        "ix_routine_completion_attendees_routine_completion_id",
        "routine_completion_attendees",
        ["routine_completion_id"],
    )
    op.create_index("ix_routine_completion_attendees_student_id", "routine_completion_attendees", ["student_id"])

    op.create_table(
        "planned_classes",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("routine_id", sa.Integer(), sa.ForeignKey("routines.id", ondelete="SET NULL"), nullable=True),
        sa.Column("class_type", sa.String(length=20), nullable=False, server_default="custom"),
        sa.Column("max_participants", sa.Integer(), nullable=True),
        sa.Column("target_students", sa.JSON(), nullable=True),
        sa.Column("materials_needed", sa.JSON(), nullable=True),
        sa.Column("notes", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="planned"),
        sa.Column(
            "routine_completion_id", sa.Integer(),
            sa.ForeignKey("routine_completions.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_planned_classes_routine_id", "planned_classes", ["routine_id"])
    op.create_index("ix_planned_classes_status", "planned_classes", ["status"])
    op.create_index("ix_planned_classes_created_by", "planned_classes", ["created_by"])
    op.create_index("ix_planned_classes_date_start_time", "planned_classes", ["date", "start_time"])


def downgrade() -> None:
    # Children first; dropping a table drops its indexes
    for table in (
        "planned_classes",
        "routine_completion_attendees",
        "routine_completions",
        "routine_block_exercises",
        "routine_blocks",
        "routine_categories",
        "exercise_categories",
        "routines",
        "exercises",
        "categories",
        "users",
    ):
        op.drop_table(table)
