"""create tracker tables

Revision ID: 3b7e2d4c9a10
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.sql import func


# revision identifiers, used by Alembic.
revision = "3b7e2d4c9a10"
down_revision = None
branch_labels = None
depends_on = None


ROLE_ENUM = sa.Enum("admin", "developer", "manager", name="roleenum")
PROJECT_STATUS_ENUM = sa.Enum("active", "completed", "on-hold", name="projectstatus")
MEMO_TYPE_ENUM = sa.Enum("short", "universal", name="memotype")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=func.now()),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.CHAR(length=36), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=256), nullable=False),
        sa.Column("role", ROLE_ENUM, nullable=False),
        sa.Column("active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=func.now()),
    )

    op.create_table(
        "clients",
        sa.Column("id", sa.CHAR(length=36), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "projects",
        sa.Column("id", sa.CHAR(length=36), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("client_id", sa.CHAR(length=36), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("status", PROJECT_STATUS_ENUM, nullable=False, server_default="active"),
        sa.Column("total_time", sa.String(length=40), nullable=True),
        sa.Column("completed_time", sa.String(length=40), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_projects_client_id", "projects", ["client_id"])

    op.create_table(
        "user_project_assignments",
        sa.Column("id", sa.CHAR(length=36), primary_key=True),
        sa.Column("user_id", sa.CHAR(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "project_id",
            sa.CHAR(length=36),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("assigned_at", sa.DateTime(), nullable=False, server_default=func.now()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_activated_at", sa.DateTime(), nullable=True),
        sa.Column("last_read_at", sa.DateTime(), nullable=False, server_default=func.now()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "project_id", name="uq_user_project_assignment"),
    )
    op.create_index(
        "ix_user_project_assignments_user_id", "user_project_assignments", ["user_id"]
    )
    op.create_index(
        "ix_user_project_assignments_project_id", "user_project_assignments", ["project_id"]
    )

    for table in ("eod_reports", "memos"):
        columns = [
            sa.Column("id", sa.CHAR(length=36), primary_key=True),
            sa.Column("user_id", sa.CHAR(length=36), sa.ForeignKey("users.id"), nullable=False),
            sa.Column(
                "project_id",
                sa.CHAR(length=36),
                sa.ForeignKey("projects.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("report_date", sa.DateTime(), nullable=False),
        ]
        if table == "eod_reports":
            columns += [
                sa.Column("client_update", sa.Text(), nullable=True),
                sa.Column("actual_update", sa.Text(), nullable=False),
                sa.Column("hours_spent", sa.Numeric(5, 2), nullable=True),
            ]
        else:
            columns += [
                sa.Column("memo_content", sa.Text(), nullable=True),
                sa.Column("memo_type", MEMO_TYPE_ENUM, nullable=False, server_default="short"),
            ]
        op.create_table(table, *columns, *_timestamps())
        op.create_index(f"ix_{table}_user_id", table, ["user_id"])
        op.create_index(f"ix_{table}_project_id", table, ["project_id"])
        op.create_index(f"ix_{table}_report_date", table, ["report_date"])

    op.create_table(
        "chat_groups",
        sa.Column("id", sa.CHAR(length=36), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column(
            "project_id",
            sa.CHAR(length=36),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        *_timestamps(),
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.CHAR(length=36), primary_key=True),
        sa.Column("sender_id", sa.CHAR(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "group_id",
            sa.CHAR(length=36),
            sa.ForeignKey("chat_groups.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("content", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_messages_group_id", "messages", ["group_id"])


def downgrade():
    op.drop_index("ix_messages_group_id", table_name="messages")
    op.drop_table("messages")
    op.drop_table("chat_groups")
    for table in ("memos", "eod_reports"):
        op.drop_index(f"ix_{table}_report_date", table_name=table)
        op.drop_index(f"ix_{table}_project_id", table_name=table)
        op.drop_index(f"ix_{table}_user_id", table_name=table)
        op.drop_table(table)
    op.drop_index("ix_user_project_assignments_project_id", table_name="user_project_assignments")
    op.drop_index("ix_user_project_assignments_user_id", table_name="user_project_assignments")
    op.drop_table("user_project_assignments")
    op.drop_index("ix_projects_client_id", table_name="projects")
    op.drop_table("projects")
    op.drop_table("clients")
    op.drop_table("users")

    bind = op.get_bind()
    MEMO_TYPE_ENUM.drop(bind, checkfirst=True)
    PROJECT_STATUS_ENUM.drop(bind, checkfirst=True)
    ROLE_ENUM.drop(bind, checkfirst=True)
