"""Statistics engine schema

Revision ID: c41d7a2e9b10
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "c41d7a2e9b10"
down_revision = None
branch_labels = None
depends_on = None


def _rate(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(7, 2), nullable=False, server_default="0")


def _count(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer(), nullable=False, server_default="0")


def upgrade() -> None:
    user_role = sa.Enum("ADMIN", "TEACHER", "STUDENT", name="user_role")
    help_severity = sa.Enum("RECENT", "WARNING", "CRITICAL", name="help_severity")

    # Source tables, owned by the platform and read by the engine
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("role", user_role, nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("username", name="users_username_key"),
    )
    op.create_index("idx_users_role", "users", ["role"])

    op.create_table(
        "classes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
    )
    op.create_table(
        "class_members",
        sa.Column("class_id", sa.Uuid(), sa.ForeignKey("classes.id", name="class_members_class_id_fkey", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", name="class_members_user_id_fkey", ondelete="CASCADE"), primary_key=True),
    )
    op.create_index("idx_class_members_user", "class_members", ["user_id"])

    op.create_table(
        "assignments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("topic", sa.String(length=255), nullable=False),
        sa.Column("teacher_id", sa.Uuid(), sa.ForeignKey("users.id", name="assignments_teacher_id_fkey"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("scheduled_publish_at", sa.DateTime(), nullable=True),
        sa.Column("due_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
    )
    op.create_index("idx_assignments_teacher", "assignments", ["teacher_id"])
    op.create_index("idx_assignments_active", "assignments", ["is_active"])

    op.create_table(
        "questions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("assignment_id", sa.Uuid(), sa.ForeignKey("assignments.id", name="questions_assignment_id_fkey", ondelete="CASCADE"), nullable=False),
        sa.Column("text_question", sa.Text(), nullable=True),
    )
    op.create_index("idx_questions_assignment", "questions", ["assignment_id"])

    op.create_table(
        "assignment_classes",
        sa.Column("assignment_id", sa.Uuid(), sa.ForeignKey("assignments.id", name="assignment_classes_assignment_id_fkey", ondelete="CASCADE"), primary_key=True),
        sa.Column("class_id", sa.Uuid(), sa.ForeignKey("classes.id", name="assignment_classes_class_id_fkey", ondelete="CASCADE"), primary_key=True),
    )
    op.create_index("idx_assignment_classes_class", "assignment_classes", ["class_id"])

    op.create_table(
        "assignment_students",
        sa.Column("assignment_id", sa.Uuid(), sa.ForeignKey("assignments.id", name="assignment_students_assignment_id_fkey", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", name="assignment_students_user_id_fkey", ondelete="CASCADE"), primary_key=True),
    )
    op.create_index("idx_assignment_students_user", "assignment_students", ["user_id"])

    op.create_table(
        "progress_attempts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("student_id", sa.Uuid(), sa.ForeignKey("users.id", name="progress_attempts_student_id_fkey"), nullable=False),
        sa.Column("assignment_id", sa.Uuid(), sa.ForeignKey("assignments.id", name="progress_attempts_assignment_id_fkey"), nullable=False),
        sa.Column("question_id", sa.Uuid(), sa.ForeignKey("questions.id", name="progress_attempts_question_id_fkey"), nullable=False),
        sa.Column("is_complete", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_correct", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("actual_score", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("idx_progress_student_assignment", "progress_attempts", ["student_id", "assignment_id"])
    op.create_index("idx_progress_assignment_complete", "progress_attempts", ["assignment_id", "is_complete"])

    # Aggregates written by the pipeline
    op.create_table(
        "student_stats",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("student_id", sa.Uuid(), sa.ForeignKey("users.id", name="student_stats_student_id_fkey", ondelete="CASCADE"), nullable=False),
        _count("total_assignments"),
        _count("completed_assignments"),
        _count("in_progress_assignments"),
        _count("not_started_assignments"),
        _rate("average_score"),
        _count("total_questions"),
        _count("total_answers"),
        _count("total_correct_answers"),
        _rate("accuracy_rate"),
        _rate("completion_rate"),
        sa.Column("last_activity_date", sa.DateTime(), nullable=True),
        sa.Column("last_updated", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("student_id", name="student_stats_student_id_key"),
    )

    op.create_table(
        "assignment_stats",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("assignment_id", sa.Uuid(), sa.ForeignKey("assignments.id", name="assignment_stats_assignment_id_fkey", ondelete="CASCADE"), nullable=False),
        _count("total_students"),
        _count("total_questions"),
        _count("completed_students"),
        _count("in_progress_students"),
        _count("not_started_students"),
        _rate("completion_rate"),
        _rate("average_score"),
        _count("total_answers"),
        _count("total_correct_answers"),
        _rate("accuracy_rate"),
        sa.Column("last_updated", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("assignment_id", name="assignment_stats_assignment_id_key"),
    )

    op.create_table(
        "class_stats",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("class_id", sa.Uuid(), sa.ForeignKey("classes.id", name="class_stats_class_id_fkey", ondelete="CASCADE"), nullable=False),
        _count("total_students"),
        _count("total_assignments"),
        _rate("average_completion"),
        _rate("average_score"),
        _rate("accuracy_rate"),
        _count("total_questions"),
        _count("total_answers"),
        _count("total_correct_answers"),
        _count("active_students"),
        _count("students_needing_help"),
        sa.Column("last_updated", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("class_id", name="class_stats_class_id_key"),
    )

    op.create_table(
        "school_stats",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        _count("total_users"),
        _count("total_teachers"),
        _count("total_students"),
        _count("total_classes"),
        _count("total_assignments"),
        _count("active_assignments"),
        _count("scheduled_assignments"),
        _count("completed_assignments"),
        _rate("average_completion_rate"),
        _rate("average_score"),
        _count("total_questions"),
        _count("total_answers"),
        _count("total_correct_answers"),
        _count("daily_active_students"),
        _count("daily_active_teachers"),
        _count("students_needing_help"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("date", name="school_stats_date_key"),
    )

    op.create_table(
        "needs_help_records",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("student_id", sa.Uuid(), sa.ForeignKey("users.id", name="needs_help_records_student_id_fkey", ondelete="CASCADE"), nullable=False),
        sa.Column("reasons", sa.JSON(), nullable=False),
        sa.Column("reason_details", sa.JSON(), nullable=False),
        sa.Column("needs_help_since", sa.DateTime(), nullable=False),
        sa.Column("days_needing_help", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("severity", help_severity, nullable=False),
        sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        _rate("average_score"),
        _rate("completion_rate"),
        _count("overdue_assignments"),
        sa.Column("teacher_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("idx_needs_help_student_resolved", "needs_help_records", ["student_id", "is_resolved"])
    op.create_index("idx_needs_help_resolved_days", "needs_help_records", ["is_resolved", "days_needing_help"])

    op.create_table(
        "needs_help_classes",
        sa.Column("record_id", sa.Uuid(), sa.ForeignKey("needs_help_records.id", name="needs_help_classes_record_id_fkey", ondelete="CASCADE"), primary_key=True),
        sa.Column("class_id", sa.Uuid(), sa.ForeignKey("classes.id", name="needs_help_classes_class_id_fkey", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "needs_help_teachers",
        sa.Column("record_id", sa.Uuid(), sa.ForeignKey("needs_help_records.id", name="needs_help_teachers_record_id_fkey", ondelete="CASCADE"), primary_key=True),
        sa.Column("teacher_id", sa.Uuid(), sa.ForeignKey("users.id", name="needs_help_teachers_teacher_id_fkey", ondelete="CASCADE"), primary_key=True),
    )


def downgrade() -> None:
    op.drop_table("needs_help_teachers")
    op.drop_table("needs_help_classes")
    op.drop_index("idx_needs_help_resolved_days", table_name="needs_help_records")
    op.drop_index("idx_needs_help_student_resolved", table_name="needs_help_records")
    op.drop_table("needs_help_records")
    op.drop_table("school_stats")
    op.drop_table("class_stats")
    op.drop_table("assignment_stats")
    op.drop_table("student_stats")
    op.drop_table("progress_attempts")
    op.drop_table("assignment_students")
    op.drop_table("assignment_classes")
    op.drop_table("questions")
    op.drop_table("assignments")
    op.drop_table("class_members")
    op.drop_table("classes")
    op.drop_table("users")

    bind = op.get_bind()
    sa.Enum(name="help_severity").drop(bind, checkfirst=True)
    sa.Enum(name="user_role").drop(bind, checkfirst=True)
