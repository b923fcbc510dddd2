"""directory email lower index

Revision ID: 0002_directory_email_lower
Revises: 0001_init
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0002_directory_email_lower"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade() -> None:
  op.create_index("ix_directory_users_email_lower", "directory_users", [sa.text("lower(email)")])


def downgrade() -> None:
  op.drop_index("ix_directory_users_email_lower", table_name="directory_users")
