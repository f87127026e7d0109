"""ui_preferences

Revision ID: 0001
Revises:
Create Date: 2026-10-18

Per-user UI state previously kept in the browser: last calendar tab and
the cached role used when the user lookup fails.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "ui_preferences",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("calendar_tab_value", sa.String(16), nullable=True),
        sa.Column("user_role", sa.String(32), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("ui_preferences")
