"""
Vocab Tutor — Sessions (Create/Read/Delete)
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session as DBSession

from app.models import Message, Session
from app.state.session import SessionSnapshot, SessionSummary
from app.store import messages as messages_store


def create_session(
    db: DBSession,
    assignment_id: str,
    join_key: str,
    topic: str,
    vocab: list[str],
    level: Optional[str],
) -> str:
    """Insert a session row with next_seq=1 and return its id."""
    session = Session(
        assignment_id=assignment_id,
        join_key=join_key,
        topic=topic,
        vocab=list(vocab),
        level=level,
        next_seq=1,
    )
    db.add(session)
    db.flush()
    return session.id


def get_snapshot(
    db: DBSession,
    session_id: str,
    message_limit: Optional[int] = None,
) -> Optional[SessionSnapshot]:
    """
    Session fields plus messages. With `message_limit` only the last N
    messages are loaded; without it the full history is.
    """
    row = db.get(Session, session_id)
    if row is None:
        return None

    if message_limit is None:
        msgs = messages_store.list_messages(db, session_id)
    else:
        msgs = messages_store.list_messages_last(db, session_id, message_limit)

    return SessionSnapshot(
        id=row.id,
        assignment_id=row.assignment_id,
        join_key=row.join_key,
        topic=row.topic,
        vocab=list(row.vocab or []),
        level=row.level,
        messages=msgs,
    )


def delete_session(db: DBSession, session_id: str) -> bool:
    """Delete a session; messages and idempotency rows go with it (FK cascade)."""
    result = db.execute(delete(Session).where(Session.id == session_id))
    return result.rowcount > 0


def list_summaries(db: DBSession, limit: int, offset: int) -> list[SessionSummary]:
    """Newest sessions first, with their message counts."""
    message_count = (
        select(func.count(Message.id))
        .where(Message.session_id == Session.id)
        .correlate(Session)
        .scalar_subquery()
    )
    rows = db.execute(
        select(Session, message_count.label("message_count"))
        .order_by(Session.created_at.desc(), Session.id)
        .limit(limit)
        .offset(offset)
    ).all()
    return [
        SessionSummary(
            session_id=s.id,
            assignment_id=s.assignment_id,
            join_key=s.join_key,
            topic=s.topic,
            vocab=list(s.vocab or []),
            message_count=count or 0,
        )
        for s, count in rows
    ]


def cleanup_older_than(db: DBSession, ttl: timedelta, now: Optional[datetime] = None) -> int:
    """Delete sessions older than `ttl`, with everything hanging off them."""
    if ttl <= timedelta(0):
        raise ValueError("ttl must be > 0")
    cutoff = (now or datetime.now(timezone.utc)) - ttl
    result = db.execute(delete(Session).where(Session.created_at < cutoff))
    return result.rowcount or 0
