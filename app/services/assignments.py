"""
Vocab Tutor — Assignments
Teachers create assignments; students find them by join key.
"""

import logging
import secrets
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from app.config import (
    RATE_CREATE_ASSIGNMENT, JOIN_KEY_ALPHABET, JOIN_KEY_LENGTH, JOIN_KEY_MAX_ATTEMPTS,
)
from app.database import transaction, run_db
from app.errors import RateLimited, AssignmentNotFound, InternalError, ValidationError
from app.services.auth import TeacherAuth
from app.services.rate_limiter import RateLimiter
from app.state.session import AssignmentView
from app.store import assignments as assignments_store

logger = logging.getLogger(__name__)


def generate_join_key(length: int = JOIN_KEY_LENGTH) -> str:
    """Short, readable key. The alphabet skips look-alike characters."""
    return "".join(secrets.choice(JOIN_KEY_ALPHABET) for _ in range(length))


class AssignmentService:
    def __init__(self, session_factory: sessionmaker, rate_limiter: RateLimiter, auth: TeacherAuth):
        self.session_factory = session_factory
        self.rate_limiter = rate_limiter
        self.auth = auth

    def _insert(self, topic: str, vocab: list[str], level: Optional[str]) -> AssignmentView:
        for attempt in range(1, JOIN_KEY_MAX_ATTEMPTS + 1):
            join_key = generate_join_key()
            try:
                with transaction(self.session_factory) as db:
                    return assignments_store.insert_assignment(db, join_key, topic, vocab, level)
            except IntegrityError:
                logger.warning(f"Join key collision ({join_key}), attempt {attempt}/{JOIN_KEY_MAX_ATTEMPTS}")
        raise InternalError("Could not generate a unique join key")

    def _get(self, assignment_id: str) -> Optional[AssignmentView]:
        with transaction(self.session_factory) as db:
            return assignments_store.get_by_id(db, assignment_id)

    async def create_assignment(
        self,
        topic: str,
        vocab: list[str],
        level: Optional[str],
        bearer: Optional[str],
        ip: str = "unknown",
    ) -> AssignmentView:
        limit, window = RATE_CREATE_ASSIGNMENT
        if not self.rate_limiter.allow(f"v1.assignments.create.ip={ip}", limit, window):
            raise RateLimited()
        self.auth.require_teacher(bearer)

        topic = topic.strip()
        vocab = [w.strip() for w in vocab if w and w.strip()]
        level = (level or "").strip() or None
        if not topic or not vocab:
            raise ValidationError("topic and vocab must not be blank")

        view = await run_db(self._insert, topic, vocab, level)
        logger.info(f"Assignment {view.id} created (join key {view.join_key}, {len(vocab)} words)")
        return view

    async def get_assignment(self, assignment_id: str) -> AssignmentView:
        view = await run_db(self._get, assignment_id)
        if view is None:
            raise AssignmentNotFound()
        return view
