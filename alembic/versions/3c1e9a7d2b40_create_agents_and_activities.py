"""Create agents and agent_activities tables.

Revision ID: 3c1e9a7d2b40
Revises:
Create Date: 2026-10-12
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from relayguard.constants import DB_SCHEMA

revision = "3c1e9a7d2b40"
down_revision = None


def upgrade() -> None:
    op.create_table(
        "agents",
        sa.Column("id", sa.String(length=128), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("role", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="idle"),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        schema=DB_SCHEMA,
    )

    op.create_table(
        "agent_activities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("agent_id", sa.String(length=128), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False, server_default=""),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        schema=DB_SCHEMA,
    )
    op.create_index(
        "idx_agent_activities_agent", "agent_activities", ["agent_id"], schema=DB_SCHEMA
    )


def downgrade() -> None:
    op.drop_index("idx_agent_activities_agent", table_name="agent_activities", schema=DB_SCHEMA)
    op.drop_table("agent_activities", schema=DB_SCHEMA)
    op.drop_table("agents", schema=DB_SCHEMA)
