"""
Vocab Tutor — Sessions
Open a chat from a join key, read it back, list, delete.
"""

import logging

from sqlalchemy.orm import sessionmaker

from app.config import RATE_OPEN_SESSION, FALLBACK_OPENER, MAX_LIST_LIMIT
from app.database import transaction, run_db
from app.errors import RateLimited, InvalidJoinKey, SessionNotFound, ValidationError
from app.models import ROLE_TUTOR
from app.services.rate_limiter import RateLimiter
from app.state.session import AssignmentView, SessionSnapshot, SessionSummary
from app.store import assignments as assignments_store
from app.store import messages as messages_store
from app.store import sessions as sessions_store
from app.tutor.llm import TutorLLM

logger = logging.getLogger(__name__)


class SessionService:
    def __init__(self, session_factory: sessionmaker, llm: TutorLLM, rate_limiter: RateLimiter):
        self.session_factory = session_factory
        self.llm = llm
        self.rate_limiter = rate_limiter

    # ─── DB steps (threadpool) ───────────────────────────────────────────────

    def _create(self, join_key: str) -> tuple[AssignmentView, str]:
        with transaction(self.session_factory) as db:
            assignment = assignments_store.get_by_join_key(db, join_key)
            if assignment is None:
                raise InvalidJoinKey()
            session_id = sessions_store.create_session(
                db,
                assignment_id=assignment.id,
                join_key=assignment.join_key,
                topic=assignment.topic,
                vocab=assignment.vocab,
                level=assignment.level,
            )
        return assignment, session_id

    def _append_opener(self, session_id: str, opener: str) -> None:
        with transaction(self.session_factory) as db:
            messages_store.append_message(db, session_id, ROLE_TUTOR, opener)

    def _snapshot(self, session_id: str) -> SessionSnapshot:
        with transaction(self.session_factory) as db:
            snapshot = sessions_store.get_snapshot(db, session_id)
        if snapshot is None:
            raise SessionNotFound()
        return snapshot

    def _list(self, limit: int, offset: int) -> list[SessionSummary]:
        with transaction(self.session_factory) as db:
            return sessions_store.list_summaries(db, limit, offset)

    def _delete(self, session_id: str) -> bool:
        with transaction(self.session_factory) as db:
            return sessions_store.delete_session(db, session_id)

    # ─── Use cases ───────────────────────────────────────────────────────────

    async def open_session(self, join_key: str, ip: str = "unknown") -> SessionSnapshot:
        """
        Start a chat for the assignment behind `join_key`.
        The opener (seq 1) is generated outside any transaction.
        """
        limit, window = RATE_OPEN_SESSION
        if not self.rate_limiter.allow(f"v1.sessions.open.ip={ip}", limit, window):
            raise RateLimited()

        assignment, session_id = await run_db(self._create, join_key.strip().upper())

        opener = (await self.llm.generate_opener(assignment.topic, assignment.vocab, assignment.level)).strip()
        if not opener:
            logger.warning(f"Session {session_id}: blank opener from {self.llm.provider_name}, using fallback")
            opener = FALLBACK_OPENER

        await run_db(self._append_opener, session_id, opener)
        logger.info(f"Session {session_id} opened for assignment {assignment.id}")
        return await run_db(self._snapshot, session_id)

    async def get_session(self, session_id: str) -> SessionSnapshot:
        return await run_db(self._snapshot, session_id)

    async def list_sessions(self, limit: int = 20, offset: int = 0) -> list[SessionSummary]:
        if not 1 <= limit <= MAX_LIST_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_LIST_LIMIT}")
        if offset < 0:
            raise ValidationError("offset must be >= 0")
        return await run_db(self._list, limit, offset)

    async def delete_session(self, session_id: str) -> None:
        if not await run_db(self._delete, session_id):
            raise SessionNotFound()
        logger.info(f"Session {session_id} deleted")
