"""pattern_testing_tables

Create the marketplace collaborator tables (users, patterns, coin and points
ledgers) and the pattern testing workflow tables.

Revision ID: 5c1e7a9b2d40
Revises:
Create Date: 2026-10-18 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5c1e7a9b2d40"
down_revision = None
branch_labels = None
depends_on = None


def _ledger_table(name):
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=30), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=300), nullable=True),
        sa.Column("reference", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(f"ix_{name}_user_id", name, ["user_id"])
    op.create_index(f"ix_{name}_reference", name, ["reference"])


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
            sa.Column("coins", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("pattern_testing_approved", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("pattern_testing_application_id", sa.Integer(), nullable=True),
            sa.Column("tester_level", sa.Integer(), nullable=True),
            sa.Column("tester_xp", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if "patterns" not in existing_tables:
        op.create_table(
            "patterns",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("creator_id", sa.Integer(), nullable=False),
            sa.Column("category", sa.String(length=100), nullable=True),
            sa.Column("difficulty_level", sa.String(length=20), nullable=True),
            sa.Column("estimated_time", sa.String(length=50), nullable=True),
            sa.Column("thumbnail_url", sa.String(length=500), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["creator_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_patterns_creator_id", "patterns", ["creator_id"])

    for ledger in ("coin_transactions", "points_transactions"):
        if ledger not in existing_tables:
            _ledger_table(ledger)

    if "testing_applications" not in existing_tables:
        op.create_table(
            "testing_applications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("user_name", sa.String(length=150), nullable=False),
            sa.Column("user_email", sa.String(length=255), nullable=False),
            sa.Column("why_testing", sa.Text(), nullable=False),
            sa.Column("experience_level", sa.String(length=20), nullable=False),
            sa.Column("availability", sa.String(length=200), nullable=False),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("reviewed_by", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_testing_applications_user_id", "testing_applications", ["user_id"])
        op.create_index("ix_testing_applications_status", "testing_applications", ["status"])
        op.create_index("ix_testing_applications_user_status", "testing_applications", ["user_id", "status"])

    if "test_assignments" not in existing_tables:
        op.create_table(
            "test_assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("pattern_id", sa.Integer(), nullable=False),
            sa.Column("tester_id", sa.Integer(), nullable=False),
            sa.Column("creator_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("deadline", sa.DateTime(timezone=True), nullable=False),
            sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("estimated_hours", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("reward_coins", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("reward_points", sa.Integer(), nullable=False, server_default="0"),
            sa.CheckConstraint("progress >= 0 AND progress <= 100", name="ck_test_assignments_progress"),
            sa.ForeignKeyConstraint(["pattern_id"], ["patterns.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["tester_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["creator_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_test_assignments_pattern_id", "test_assignments", ["pattern_id"])
        op.create_index("ix_test_assignments_tester_id", "test_assignments", ["tester_id"])
        op.create_index("ix_test_assignments_creator_id", "test_assignments", ["creator_id"])
        op.create_index("ix_test_assignments_status", "test_assignments", ["status"])
        op.create_index("ix_test_assignments_tester_pattern", "test_assignments", ["tester_id", "pattern_id"])

    if "test_feedback" not in existing_tables:
        op.create_table(
            "test_feedback",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("assignment_id", sa.Integer(), nullable=False),
            sa.Column("tester_id", sa.Integer(), nullable=False),
            sa.Column("pattern_id", sa.Integer(), nullable=False),
            sa.Column("creator_id", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("images", sa.JSON(), nullable=True),
            sa.Column("rating", sa.Integer(), nullable=True),
            sa.Column("clarity", sa.Integer(), nullable=True),
            sa.Column("accuracy", sa.Integer(), nullable=True),
            sa.Column("difficulty", sa.String(length=20), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("response", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["assignment_id"], ["test_assignments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_test_feedback_assignment_id", "test_feedback", ["assignment_id"])
        op.create_index("ix_test_feedback_tester_id", "test_feedback", ["tester_id"])
        op.create_index("ix_test_feedback_pattern_id", "test_feedback", ["pattern_id"])
        op.create_index("ix_test_feedback_creator_id", "test_feedback", ["creator_id"])
        op.create_index(
            "uq_test_feedback_final_review",
            "test_feedback",
            ["assignment_id"],
            unique=True,
            postgresql_where=sa.text("type = 'final_review'"),
            sqlite_where=sa.text("type = 'final_review'"),
        )

    if "pattern_test_metrics" not in existing_tables:
        op.create_table(
            "pattern_test_metrics",
            sa.Column("pattern_id", sa.Integer(), nullable=False),
            sa.Column("total_tests", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("completed_tests", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("average_rating", sa.Float(), nullable=False, server_default="0"),
            sa.Column("average_completion_time", sa.Float(), nullable=False, server_default="0"),
            sa.Column("average_difficulty", sa.Float(), nullable=False, server_default="0"),
            sa.Column("average_clarity", sa.Float(), nullable=False, server_default="0"),
            sa.Column("average_accuracy", sa.Float(), nullable=False, server_default="0"),
            sa.Column("common_issues", sa.JSON(), nullable=False),
            sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["pattern_id"], ["patterns.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("pattern_id"),
        )

    if "tester_stats" not in existing_tables:
        op.create_table(
            "tester_stats",
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("xp", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_tests_completed", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_tests_in_progress", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("average_rating", sa.Float(), nullable=False, server_default="0"),
            sa.Column("average_completion_time", sa.Float(), nullable=False, server_default="0"),
            sa.Column("specialties", sa.JSON(), nullable=False),
            sa.Column("badges", sa.JSON(), nullable=False),
            sa.Column("total_coins_earned", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_points_earned", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("user_id"),
        )
        op.create_index("ix_tester_stats_total_tests_completed", "tester_stats", ["total_tests_completed"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in (
        "tester_stats",
        "pattern_test_metrics",
        "test_feedback",
        "test_assignments",
        "testing_applications",
        "points_transactions",
        "coin_transactions",
        "patterns",
        "users",
    ):
        if table in existing_tables:
            op.drop_table(table)
