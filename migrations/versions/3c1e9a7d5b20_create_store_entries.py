"""create store entries table

Revision ID: 3c1e9a7d5b20
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3c1e9a7d5b20"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "store_entries",
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade():
    op.drop_table("store_entries")
