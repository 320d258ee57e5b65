"""SQLAlchemy 2.0 models for dedup and agent persistence."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from relayguard.constants import DB_SCHEMA


class Base(DeclarativeBase):
    pass


class DedupEntry(Base):
    """Durable dedup record.

    Identity is the fingerprint alone: task/seq correlation is folded into the
    hash, so the unique constraint stays on one column. Rows are insert/delete
    only. An expired row is deleted, never refreshed in place.
    """

    __tablename__ = "message_dedup"
    __table_args__ = (
        Index("uq_message_dedup_fingerprint", "fingerprint", unique=True),
        Index("idx_message_dedup_expires", "expires_at"),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    from_agent_id: Mapped[str] = mapped_column(String(128), nullable=False)
    to_agent_id: Mapped[str] = mapped_column(String(128), nullable=False)
    task_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    seq: Mapped[str | None] = mapped_column(String(64), nullable=True)
    seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AgentRecord(Base):
    __tablename__ = "agents"
    __table_args__ = {"schema": DB_SCHEMA}

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), default="", server_default="")
    role: Mapped[str] = mapped_column(String(64), default="", server_default="")
    status: Mapped[str] = mapped_column(String(16), default="idle", server_default="idle")
    last_active_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ActivityRecord(Base):
    """Append-only audit trail. relayguard writes here but never reads back."""

    __tablename__ = "agent_activities"
    __table_args__ = (
        Index("idx_agent_activities_agent", "agent_id"),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agent_id: Mapped[str] = mapped_column(String(128), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    summary: Mapped[str] = mapped_column(Text, default="", server_default="")
    details: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
