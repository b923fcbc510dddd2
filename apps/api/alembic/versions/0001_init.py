"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  op.create_table(
    "tasks",
    sa.Column("seq", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("task_id", sa.String(36), nullable=False),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=False, server_default=""),
    sa.Column("priority", sa.String(), nullable=False, server_default="medium"),
    sa.Column("status", sa.String(), nullable=False, server_default="open"),
    sa.Column("due_date", sa.String(), nullable=True),
    sa.Column("time_estimate", sa.Float(), nullable=True),
    sa.Column("assigned_to", sa.String(), nullable=True),
    sa.Column("assigned_users", sa.JSON(), nullable=False),
    sa.Column("created_by", sa.String(), nullable=True),
    sa.Column("created_by_email", sa.String(), nullable=True),
    sa.Column("created_at", sa.String(), nullable=True),
    sa.Column("updated_at", sa.String(), nullable=True),
    sa.Column("updated_by", sa.String(), nullable=True),
  )
  op.create_index("ix_tasks_task_id", "tasks", ["task_id"], unique=True)
  op.create_index("ix_tasks_assigned_to", "tasks", ["assigned_to"])

  op.create_table(
    "assignments",
    sa.Column("seq", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("assignment_id", sa.String(36), nullable=False),
    sa.Column("task_id", sa.String(36), nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("user_email", sa.String(), nullable=True),
    sa.Column("user_name", sa.String(), nullable=True),
    sa.Column("assigned_by", sa.String(), nullable=True),
    sa.Column("assigned_at", sa.String(), nullable=True),
    sa.UniqueConstraint("task_id", "user_id", name="uq_assignments_task_user"),
  )
  op.create_index("ix_assignments_assignment_id", "assignments", ["assignment_id"], unique=True)
  op.create_index("ix_assignments_task_id", "assignments", ["task_id"])
  op.create_index("ix_assignments_user_id", "assignments", ["user_id"])

  op.create_table(
    "directory_users",
    sa.Column("seq", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("username", sa.String(), nullable=False),
    sa.Column("sub", sa.String(), nullable=True),
    sa.Column("email", sa.String(), nullable=True),
    sa.Column("name", sa.String(), nullable=True),
    sa.Column("role", sa.String(), nullable=False, server_default="member"),
    sa.Column("groups", sa.JSON(), nullable=False),
    sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    sa.Column("status", sa.String(), nullable=False, server_default="CONFIRMED"),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_directory_users_username", "directory_users", ["username"], unique=True)
  op.create_index("ix_directory_users_sub", "directory_users", ["sub"], unique=True)
  op.create_index("ix_directory_users_email", "directory_users", ["email"])


def downgrade() -> None:
  op.drop_index("ix_directory_users_email", table_name="directory_users")
  op.drop_index("ix_directory_users_sub", table_name="directory_users")
  op.drop_index("ix_directory_users_username", table_name="directory_users")
  op.drop_table("directory_users")
  op.drop_index("ix_assignments_user_id", table_name="assignments")
  op.drop_index("ix_assignments_task_id", table_name="assignments")
  op.drop_index("ix_assignments_assignment_id", table_name="assignments")
  op.drop_table("assignments")
  op.drop_index("ix_tasks_assigned_to", table_name="tasks")
  op.drop_index("ix_tasks_task_id", table_name="tasks")
  op.drop_table("tasks")
