"""
Vocab Tutor — Message Ingestion
The student-message pipeline:

  rate limit → snapshot → ledger fast path → [tx: claim + append student]
  → coverage → LLM (no tx, no lock) → hint → [tx: append tutor + complete]

Database work runs in the threadpool; the LLM call is awaited directly so a
slow provider never holds a connection or a row lock.
"""

import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from app.config import (
    RATE_POST_MESSAGE, LLM_CONTEXT_MESSAGES, COVERAGE_STUDENT_MESSAGES, HINT_MIN_STUDENT_TURNS,
    MAX_IDEMPOTENCY_KEY_CHARS,
)
from app.database import transaction, run_db
from app.errors import RateLimited, SessionNotFound, ConflictInProgress, ValidationError
from app.models import ROLE_STUDENT, ROLE_TUTOR
from app.services.rate_limiter import RateLimiter
from app.state.session import SessionSnapshot, TutorReply
from app.store import idempotency, messages as messages_store, sessions as sessions_store
from app.tutor import coverage, hints
from app.tutor.llm import TutorLLM

logger = logging.getLogger(__name__)


class MessageIngestion:
    def __init__(self, session_factory: sessionmaker, llm: TutorLLM, rate_limiter: RateLimiter):
        self.session_factory = session_factory
        self.llm = llm
        self.rate_limiter = rate_limiter

    # ─── DB steps (threadpool) ───────────────────────────────────────────────

    def _load(self, session_id: str, key: Optional[str]) -> Optional[TutorReply]:
        """Existence check plus the completed reply for `key`, if any."""
        with transaction(self.session_factory) as db:
            snapshot = sessions_store.get_snapshot(db, session_id, LLM_CONTEXT_MESSAGES)
            if snapshot is None:
                raise SessionNotFound()
            return idempotency.get(db, session_id, key) if key else None

    def _cached(self, session_id: str, key: str) -> Optional[TutorReply]:
        with transaction(self.session_factory) as db:
            return idempotency.get(db, session_id, key)

    def _claim_and_append(self, session_id: str, key: str, text: str) -> bool:
        # Claim and append commit together, or neither does.
        with transaction(self.session_factory) as db:
            if not idempotency.claim(db, session_id, key):
                return False
            messages_store.append_message(db, session_id, ROLE_STUDENT, text)
            return True

    def _append_student(self, session_id: str, text: str) -> None:
        with transaction(self.session_factory) as db:
            messages_store.append_message(db, session_id, ROLE_STUDENT, text)

    def _context(self, session_id: str) -> tuple[SessionSnapshot, str, int]:
        """Snapshot for the LLM, the student corpus for coverage, and the student turn count."""
        with transaction(self.session_factory) as db:
            snapshot = sessions_store.get_snapshot(db, session_id, LLM_CONTEXT_MESSAGES)
            if snapshot is None:
                raise SessionNotFound()
            corpus = "\n".join(
                messages_store.list_student_contents_last(db, session_id, COVERAGE_STUDENT_MESSAGES)
            )
            turns = messages_store.count_by_role(db, session_id, ROLE_STUDENT)
        return snapshot, corpus, turns

    def _finish(self, session_id: str, key: Optional[str], reply: TutorReply) -> None:
        with transaction(self.session_factory) as db:
            messages_store.append_message(db, session_id, ROLE_TUTOR, reply.tutor_text)
            if key:
                idempotency.complete(db, session_id, key, reply)

    # ─── Use case ────────────────────────────────────────────────────────────

    async def post_message(
        self,
        session_id: str,
        text: str,
        idempotency_key: Optional[str] = None,
        ip: str = "unknown",
    ) -> TutorReply:
        """
        Ingest one student message and return the tutor's reply.

        With an idempotency key, a retry of a finished request returns the
        stored reply without touching the LLM or writing anything. A retry
        that arrives while the first attempt is still running gets
        ConflictInProgress. Upstream failures propagate and leave the key
        pending until it goes stale.
        """
        limit, window = RATE_POST_MESSAGE
        if not self.rate_limiter.allow(f"v1.sessions.messages.ip={ip}.session={session_id}", limit, window):
            raise RateLimited()

        key = (idempotency_key or "").strip() or None
        if key and len(key) > MAX_IDEMPOTENCY_KEY_CHARS:
            raise ValidationError(f"Idempotency-Key must be at most {MAX_IDEMPOTENCY_KEY_CHARS} characters")
        student_text = text.strip()

        cached = await run_db(self._load, session_id, key)
        if cached is not None:
            logger.info(f"Session {session_id}: replaying stored reply for key {key}")
            return cached

        if key:
            claimed = await run_db(self._claim_and_append, session_id, key, student_text)
            if not claimed:
                cached = await run_db(self._cached, session_id, key)
                if cached is not None:
                    return cached
                raise ConflictInProgress()
        else:
            await run_db(self._append_student, session_id, student_text)

        snapshot, corpus, student_turns = await run_db(self._context, session_id)
        used, missing = coverage.compute(corpus, snapshot.vocab)

        tutor_text = await self.llm.tutor_reply(snapshot, student_text, used, missing)

        hint = None
        if missing and student_turns >= HINT_MIN_STUDENT_TURNS:
            hint = hints.pick(missing)

        reply = TutorReply(
            tutor_text=tutor_text,
            hint=hint,
            vocab_used=used,
            vocab_missing=missing,
        )

        await run_db(self._finish, session_id, key, reply)
        logger.info(
            f"Session {session_id}: turn {student_turns}, "
            f"used {len(used)}/{len(snapshot.vocab)}, hint={'yes' if hint else 'no'}"
        )
        return reply
