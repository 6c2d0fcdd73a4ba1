"""
Vocab Tutor — ORM Models
Assignments, chat sessions, their messages, and the idempotency ledger.
UUID string primary keys.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String, Integer, Text, DateTime, JSON, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.config import MAX_IDEMPOTENCY_KEY_CHARS
from app.database import Base


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _uuid() -> str:
    return str(uuid.uuid4())

def _now() -> datetime:
    return datetime.now(timezone.utc)


ROLE_TUTOR = "tutor"
ROLE_STUDENT = "student"


# ─── Assignments ─────────────────────────────────────────────────────────────

class Assignment(Base):
    __tablename__ = "assignments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    join_key: Mapped[str] = mapped_column(String(12), unique=True, index=True)
    topic: Mapped[str] = mapped_column(String(200))
    vocab: Mapped[list] = mapped_column(JSON, default=list)
    level: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


# ─── Sessions ────────────────────────────────────────────────────────────────

class Session(Base):
    """One student's chat, created when they join an assignment."""
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    assignment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("assignments.id", ondelete="CASCADE"), index=True
    )
    join_key: Mapped[str] = mapped_column(String(12))
    topic: Mapped[str] = mapped_column(String(200))
    vocab: Mapped[list] = mapped_column(JSON, default=list)
    level: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Next message seq to hand out. Only advanced under the row lock.
    next_seq: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    # Relationships
    messages: Mapped[list["Message"]] = relationship(
        back_populates="session",
        order_by="Message.seq",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_sessions_created", "created_at"),
    )


# ─── Messages ────────────────────────────────────────────────────────────────

class Message(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sessions.id", ondelete="CASCADE")
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(10))  # "tutor" | "student"
    content: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    # Relationships
    session: Mapped["Session"] = relationship(back_populates="messages")

    # Gapless, unique seq per session is also enforced here
    __table_args__ = (
        UniqueConstraint("session_id", "seq", name="uq_messages_session_seq"),
        Index("ix_messages_session_role_seq", "session_id", "role", "seq"),
    )


# ─── Idempotency Ledger ──────────────────────────────────────────────────────

class IdempotencyRecord(Base):
    """
    One row per (session, client key). `response` holds either the pending
    sentinel {"status": "pending"} or the completed reply payload.
    """
    __tablename__ = "idempotency"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sessions.id", ondelete="CASCADE")
    )
    idem_key: Mapped[str] = mapped_column(String(MAX_IDEMPOTENCY_KEY_CHARS))
    response: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    __table_args__ = (
        UniqueConstraint("session_id", "idem_key", name="uq_idempotency_session_key"),
        Index("ix_idempotency_created", "created_at"),
    )
