"""
Vocab Tutor — Idempotency Ledger

One row per (session_id, idem_key):

    absent ──claim()──▶ pending ──complete()──▶ completed

- pending rows hold the sentinel {"status": "pending"} in `response`
- completed rows hold TutorReply.to_dict()
- a pending row older than IDEMPOTENCY_PENDING_TTL_SECONDS is stale: get()
  reports it as absent and claim() takes it over in place, so a client whose
  first attempt died can resubmit with the same key

claim() and complete() must share a transaction with the message append
they guard.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session as DBSession

from app.config import IDEMPOTENCY_PENDING_TTL_SECONDS
from app.database import require_transaction
from app.models import IdempotencyRecord
from app.state.session import TutorReply

logger = logging.getLogger(__name__)

PENDING = {"status": "pending"}
PENDING_TTL = timedelta(seconds=IDEMPOTENCY_PENDING_TTL_SECONDS)

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def is_pending(response) -> bool:
    return isinstance(response, dict) and response.get("status") == "pending"


def is_stale(created_at: datetime, now: datetime) -> bool:
    return now - _as_utc(created_at) > PENDING_TTL


def _find(db: DBSession, session_id: str, key: str, lock: bool = False) -> Optional[IdempotencyRecord]:
    stmt = select(IdempotencyRecord).where(
        IdempotencyRecord.session_id == session_id,
        IdempotencyRecord.idem_key == key,
    )
    if lock:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalar_one_or_none()


# ─── Read ────────────────────────────────────────────────────────────────────

def get(db: DBSession, session_id: str, key: str) -> Optional[TutorReply]:
    """
    Completed reply for this key, or None.

    None covers three cases the caller does not need to tell apart here:
    no row, a fresh pending row, a stale pending row.
    """
    row = _find(db, session_id, key)
    if row is None or is_pending(row.response):
        return None

    try:
        return TutorReply.from_dict(row.response)
    except (KeyError, TypeError):
        logger.warning(f"Idempotency row {session_id}/{key} holds an unreadable payload")
        return None


# ─── Write ───────────────────────────────────────────────────────────────────

def claim(db: DBSession, session_id: str, key: str, now: Optional[datetime] = None) -> bool:
    """
    Reserve `key` for this request. True only for the caller that now owns it.

    First claimant wins via insert-if-absent. A stale pending row is taken
    over by refreshing its created_at under a row lock.
    """
    require_transaction(db)
    now = now or _now()

    dialect = db.get_bind().dialect.name
    insert = _INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Idempotency ledger does not support dialect {dialect}")

    result = db.execute(
        insert(IdempotencyRecord.__table__)
        .values(session_id=session_id, idem_key=key, response=PENDING, created_at=now)
        .on_conflict_do_nothing(index_elements=["session_id", "idem_key"])
    )
    if result.rowcount == 1:
        return True

    row = _find(db, session_id, key, lock=True)
    if row is not None and is_pending(row.response) and is_stale(row.created_at, now):
        logger.info(f"Idempotency key {session_id}/{key} was stale, reclaiming")
        row.created_at = now
        db.flush()
        return True
    return False


def complete(db: DBSession, session_id: str, key: str, reply: TutorReply) -> bool:
    """
    Replace the pending sentinel with the final payload.

    Only a pending row is overwritten, so the first completion sticks.
    Returns False if there was nothing pending to complete.
    """
    require_transaction(db)
    row = _find(db, session_id, key, lock=True)
    if row is None or not is_pending(row.response):
        logger.warning(f"Idempotency key {session_id}/{key} not pending at completion, leaving as is")
        return False

    row.response = reply.to_dict()
    db.flush()
    return True


def cleanup_older_than(db: DBSession, ttl: timedelta, now: Optional[datetime] = None) -> int:
    """Delete ledger rows older than `ttl`. Returns the number removed."""
    if ttl <= timedelta(0):
        raise ValueError("ttl must be > 0")
    cutoff = (now or _now()) - ttl
    result = db.execute(
        delete(IdempotencyRecord).where(IdempotencyRecord.created_at < cutoff)
    )
    return result.rowcount or 0
