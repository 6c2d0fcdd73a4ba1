"""
Vocab Tutor — Teacher Authorization
A single shared bearer token (TEACHER_TOKEN) gates assignment creation.
No token configured means nobody is a teacher.
"""

import hmac
import logging
from typing import Optional

from app.config import TEACHER_TOKEN
from app.errors import Unauthorized

logger = logging.getLogger(__name__)


class TeacherAuth:
    def __init__(self, token: str = TEACHER_TOKEN):
        self._token = (token or "").strip()
        if not self._token:
            logger.warning("TEACHER_TOKEN is not set, assignment creation is disabled")

    def is_teacher(self, bearer: Optional[str]) -> bool:
        if not self._token or not bearer:
            return False
        return hmac.compare_digest(bearer.strip().encode(), self._token.encode())

    def require_teacher(self, bearer: Optional[str]) -> None:
        if not self.is_teacher(bearer):
            raise Unauthorized("Teacher token required")
