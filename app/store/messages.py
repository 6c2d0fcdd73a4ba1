"""
Vocab Tutor — Messages (Read/Append)
Every write goes through append_message(), which hands out seq numbers from
sessions.next_seq under a row lock. Rows are never updated afterwards.
"""

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session as DBSession

from app.database import require_transaction
from app.errors import SessionNotFound
from app.models import Message, Session, ROLE_STUDENT, ROLE_TUTOR
from app.state.session import ChatMessage

_ROLES = (ROLE_TUTOR, ROLE_STUDENT)


# ─── Write ───────────────────────────────────────────────────────────────────

def append_message(db: DBSession, session_id: str, role: str, content: str) -> int:
    """
    Append one message and return its seq.

    Must run inside transaction(). The session row stays locked until that
    transaction ends, so concurrent appenders to the same session queue up
    and seq stays gapless. Other sessions are not affected.
    """
    require_transaction(db)
    if role not in _ROLES:
        raise ValueError(f"Unknown role: {role}")

    next_seq = db.execute(
        select(Session.next_seq)
        .where(Session.id == session_id)
        .with_for_update()
    ).scalar_one_or_none()
    if next_seq is None:
        raise SessionNotFound()

    db.add(Message(session_id=session_id, seq=next_seq, role=role, content=content))
    db.execute(
        update(Session)
        .where(Session.id == session_id)
        .values(next_seq=Session.next_seq + 1)
    )
    db.flush()
    return next_seq


# ─── Read ────────────────────────────────────────────────────────────────────

def _to_chat(rows) -> list[ChatMessage]:
    return [ChatMessage(role=r.role, content=r.content) for r in rows]


def list_messages(db: DBSession, session_id: str) -> list[ChatMessage]:
    """Full history, seq ascending."""
    rows = db.execute(
        select(Message.role, Message.content)
        .where(Message.session_id == session_id)
        .order_by(Message.seq.asc())
    ).all()
    return _to_chat(rows)


def list_messages_last(db: DBSession, session_id: str, limit: int) -> list[ChatMessage]:
    """Last `limit` messages, still oldest first. Keeps LLM context bounded."""
    if limit <= 0:
        raise ValueError("limit must be > 0")
    rows = db.execute(
        select(Message.role, Message.content)
        .where(Message.session_id == session_id)
        .order_by(Message.seq.desc())
        .limit(limit)
    ).all()
    return _to_chat(reversed(rows))


def list_student_contents_last(db: DBSession, session_id: str, limit: int) -> list[str]:
    """Last `limit` student turns in chronological order."""
    if limit <= 0:
        raise ValueError("limit must be > 0")
    rows = db.execute(
        select(Message.content)
        .where(Message.session_id == session_id, Message.role == ROLE_STUDENT)
        .order_by(Message.seq.desc())
        .limit(limit)
    ).scalars().all()
    return list(reversed(rows))


def count_by_role(db: DBSession, session_id: str, role: str) -> int:
    return db.execute(
        select(func.count())
        .select_from(Message)
        .where(Message.session_id == session_id, Message.role == role)
    ).scalar_one()
