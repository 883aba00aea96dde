"""initial_expense_schema

Create users, projects, expenses, notifications, temporary_approvers,
chats, chat_messages and scheduled_jobs.

Revision ID: a1c0e5d2b7f1
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1c0e5d2b7f1"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("phone", sa.String(length=32), nullable=False),
            sa.Column("role", sa.String(length=30), nullable=False, server_default="USER"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("assigned_projects", sa.JSON(), nullable=True),
            sa.Column("device_token", sa.String(length=512), nullable=True),
            sa.Column("notification_preferences", sa.JSON(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_users_phone", "users", ["phone"], unique=True)

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("code", sa.String(length=20), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("budget", sa.Float(), nullable=False, server_default="0"),
            sa.Column("department_budgets", sa.JSON(), nullable=True),
            sa.Column("categories", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
            sa.Column("manager_id", sa.String(length=32), nullable=True),
            sa.Column("approver_ids", sa.JSON(), nullable=True),
            sa.Column("production_head_ids", sa.JSON(), nullable=True),
            sa.Column("team_members", sa.JSON(), nullable=True),
            sa.Column("temporary_approver_phone", sa.String(length=32), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.PrimaryKeyConstraint("id"),
        )

    if "expenses" not in existing_tables:
        op.create_table(
            "expenses",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("project_id", sa.String(length=32), nullable=False),
            sa.Column("user_id", sa.String(length=32), nullable=False),
            sa.Column("user_name", sa.String(length=150), nullable=True),
            sa.Column("date", sa.Date(), nullable=True),
            sa.Column("amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("department", sa.String(length=100), nullable=True),
            sa.Column("category", sa.String(length=100), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("mode_of_payment", sa.String(length=20), nullable=True),
            sa.Column("tds", sa.Float(), nullable=True),
            sa.Column("gst", sa.Float(), nullable=True),
            sa.Column("net_amount", sa.Float(), nullable=True),
            sa.Column("attachment_url", sa.String(length=1000), nullable=True),
            sa.Column("attachment_file_name", sa.String(length=255), nullable=True),
            sa.Column("receipt_number", sa.String(length=100), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
            _ts("submitted_at"),
            _ts("reviewed_at"),
            sa.Column("reviewed_by", sa.String(length=150), nullable=True),
            sa.Column("review_comments", sa.Text(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        for column in ("project_id", "user_id", "department", "category", "status"):
            op.create_index(f"ix_expenses_{column}", "expenses", [column])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("recipient_id", sa.String(length=32), nullable=False),
            sa.Column("recipient_role", sa.String(length=30), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("type", sa.String(length=40), nullable=False, server_default="INFO"),
            sa.Column("project_id", sa.String(length=32), nullable=True),
            sa.Column("project_name", sa.String(length=200), nullable=True),
            sa.Column("related_id", sa.String(length=32), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("read_at"),
            sa.Column("action_required", sa.Boolean(), nullable=True),
            sa.Column("navigation_target", sa.String(length=300), nullable=True),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
        )
        for column in ("recipient_id", "type", "project_id", "created_at"):
            op.create_index(f"ix_notifications_{column}", "notifications", [column])

    if "temporary_approvers" not in existing_tables:
        op.create_table(
            "temporary_approvers",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("project_id", sa.String(length=32), nullable=False),
            sa.Column("approver_id", sa.String(length=32), nullable=False),
            sa.Column("approver_name", sa.String(length=150), nullable=True),
            sa.Column("approver_phone", sa.String(length=32), nullable=True),
            _ts("assigned_date"),
            _ts("expiring_date"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
            sa.Column("response_comment", sa.Text(), nullable=True),
            _ts("responded_at"),
            sa.Column("assigned_by", sa.String(length=32), nullable=False),
            sa.Column("assigned_by_name", sa.String(length=150), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_temporary_approvers_project_id", "temporary_approvers", ["project_id"])
        op.create_index("ix_temporary_approvers_approver_id", "temporary_approvers", ["approver_id"])

    if "chats" not in existing_tables:
        op.create_table(
            "chats",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("project_id", sa.String(length=32), nullable=False),
            sa.Column("members", sa.JSON(), nullable=False),
            sa.Column("last_message", sa.Text(), nullable=True),
            _ts("last_message_time"),
            sa.Column("last_message_sender_id", sa.String(length=32), nullable=True),
            sa.Column("unread_count", sa.JSON(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_chats_project_id", "chats", ["project_id"])

    if "chat_messages" not in existing_tables:
        op.create_table(
            "chat_messages",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("chat_id", sa.String(length=32), nullable=False),
            sa.Column("sender_id", sa.String(length=32), nullable=False),
            sa.Column("sender_name", sa.String(length=150), nullable=True),
            sa.Column("sender_role", sa.String(length=30), nullable=True),
            sa.Column("message_type", sa.String(length=10), nullable=True),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("media_url", sa.String(length=1000), nullable=True),
            _ts("timestamp"),
            sa.Column("read_by", sa.JSON(), nullable=True),
            sa.ForeignKeyConstraint(["chat_id"], ["chats.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_chat_messages_chat_id", "chat_messages", ["chat_id"])
        op.create_index("ix_chat_messages_timestamp", "chat_messages", ["timestamp"])

    if "scheduled_jobs" not in existing_tables:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("cron", sa.String(length=100), nullable=False),
            sa.Column("is_enabled", sa.Boolean(), nullable=False),
            _ts("last_run_at"),
            _ts("last_success_at"),
            sa.Column("last_status", sa.String(length=20), nullable=True),
            sa.Column("last_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_result", sa.JSON(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=False),
            sa.Column("failure_count", sa.Integer(), nullable=False),
            _ts("created_at"),
            _ts("updated_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def downgrade():
    for table in (
        "scheduled_jobs",
        "chat_messages",
        "chats",
        "temporary_approvers",
        "notifications",
        "expenses",
        "projects",
        "users",
    ):
        op.drop_table(table)
