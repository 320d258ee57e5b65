"""Create message_dedup table for cross-restart message dedup.

Revision ID: 8f4b2d6e1a93
Revises: 3c1e9a7d2b40
Create Date: 2026-10-14

Identity is the fingerprint alone (task/seq correlation folded into the
hash), so the unique index spans exactly one column. Rows are insert/delete
only; expires_at is indexed for the TTL prune.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from relayguard.constants import DB_SCHEMA

revision: str = "8f4b2d6e1a93"
down_revision: Union[str, Sequence[str], None] = "3c1e9a7d2b40"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "message_dedup",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("fingerprint", sa.String(length=64), nullable=False),
        sa.Column("from_agent_id", sa.String(length=128), nullable=False),
        sa.Column("to_agent_id", sa.String(length=128), nullable=False),
        sa.Column("task_id", sa.String(length=128), nullable=True),
        sa.Column("seq", sa.String(length=64), nullable=True),
        sa.Column("seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        schema=DB_SCHEMA,
    )
    op.create_index(
        "uq_message_dedup_fingerprint",
        "message_dedup",
        ["fingerprint"],
        unique=True,
        schema=DB_SCHEMA,
    )
    op.create_index(
        "idx_message_dedup_expires", "message_dedup", ["expires_at"], schema=DB_SCHEMA
    )


def downgrade() -> None:
    op.drop_index("idx_message_dedup_expires", table_name="message_dedup", schema=DB_SCHEMA)
    op.drop_index("uq_message_dedup_fingerprint", table_name="message_dedup", schema=DB_SCHEMA)
    op.drop_table("message_dedup", schema=DB_SCHEMA)
