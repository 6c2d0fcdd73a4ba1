"""
Tests for the assignment/session services, teacher auth and maintenance.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from app.config import (
    IDEMPOTENCY_PENDING_TTL_SECONDS, JOIN_KEY_ALPHABET, LLM_MAX_RETRIES, LLM_TOTAL_TIMEOUT, pending_ttl_seconds,
)
from app.database import transaction
from app.errors import (
    AssignmentNotFound, InternalError, InvalidJoinKey, RateLimited, SessionNotFound, Unauthorized,
    ValidationError,
)
from app.models import IdempotencyRecord, Session
from app.services import assignments as assignments_module
from app.services.assignments import AssignmentService, generate_join_key
from app.services.auth import TeacherAuth
from app.services.maintenance import MaintenanceReport, MaintenanceRunner, maintenance_loop
from app.services.sessions import SessionService
from app.store import idempotency

TOKEN = "s3cret"


@pytest.fixture
def assignments(session_factory, limiter):
    return AssignmentService(session_factory, limiter, TeacherAuth(TOKEN))


@pytest.fixture
def sessions(session_factory, llm, limiter):
    return SessionService(session_factory, llm, limiter)


# ─── Teacher Auth ────────────────────────────────────────────────────────────

class TestTeacherAuth:
    def test_matching_token(self):
        assert TeacherAuth(TOKEN).is_teacher(TOKEN) is True

    def test_wrong_or_missing_token(self):
        auth = TeacherAuth(TOKEN)
        assert auth.is_teacher("nope") is False
        assert auth.is_teacher(None) is False
        assert auth.is_teacher("") is False

    def test_fails_closed_without_configured_token(self):
        auth = TeacherAuth("")
        assert auth.is_teacher("") is False
        assert auth.is_teacher("anything") is False
        with pytest.raises(Unauthorized):
            auth.require_teacher("anything")


# ─── Join Keys ───────────────────────────────────────────────────────────────

class TestJoinKey:
    def test_shape(self):
        for _ in range(50):
            key = generate_join_key()
            assert len(key) == 6
            assert set(key) <= set(JOIN_KEY_ALPHABET)

    def test_alphabet_has_no_lookalikes(self):
        assert not set("ILOU01") & set(JOIN_KEY_ALPHABET)


# ─── Assignments ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestAssignmentService:
    async def test_create_and_get(self, assignments):
        view = await assignments.create_assignment("Movies", ["because", " however "], "A2", bearer=TOKEN)
        again = await assignments.get_assignment(view.id)
        assert again.vocab == ["because", "however"]
        assert again.level == "A2"

    async def test_rate_limit_checked_before_auth(self, assignments):
        for _ in range(10):
            with pytest.raises(Unauthorized):
                await assignments.create_assignment("Movies", ["because"], None, bearer=None, ip="1.1.1.1")
        with pytest.raises(RateLimited):
            await assignments.create_assignment("Movies", ["because"], None, bearer=TOKEN, ip="1.1.1.1")

    async def test_blank_after_trim(self, assignments):
        with pytest.raises(ValidationError):
            await assignments.create_assignment("Movies", ["  ", ""], None, bearer=TOKEN)

    async def test_join_key_collision_retries(self, assignments, monkeypatch):
        first = await assignments.create_assignment("Movies", ["because"], None, bearer=TOKEN)
        keys = iter([first.join_key, first.join_key, "ZZZZ22"])
        monkeypatch.setattr(assignments_module, "generate_join_key", lambda: next(keys))

        second = await assignments.create_assignment("Food", ["however"], None, bearer=TOKEN)
        assert second.join_key == "ZZZZ22"

    async def test_join_key_attempts_exhausted(self, assignments, monkeypatch):
        first = await assignments.create_assignment("Movies", ["because"], None, bearer=TOKEN)
        monkeypatch.setattr(assignments_module, "generate_join_key", lambda: first.join_key)

        with pytest.raises(InternalError):
            await assignments.create_assignment("Food", ["however"], None, bearer=TOKEN)

    async def test_get_unknown(self, assignments):
        with pytest.raises(AssignmentNotFound):
            await assignments.get_assignment("00000000-0000-0000-0000-000000000000")


# ─── Sessions ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestSessionService:
    async def test_open_persists_opener_as_seq_one(self, assignments, sessions, llm):
        view = await assignments.create_assignment("Movies", ["because"], "B1", bearer=TOKEN)
        snapshot = await sessions.open_session(f"  {view.join_key.lower()} ")

        assert snapshot.assignment_id == view.id
        assert snapshot.level == "B1"
        assert [m.role for m in snapshot.messages] == ["tutor"]
        assert llm.opener_calls == 1

    async def test_open_unknown_key(self, sessions, llm):
        with pytest.raises(InvalidJoinKey):
            await sessions.open_session("NOPE22")
        assert llm.opener_calls == 0

    async def test_open_rate_limited(self, assignments, sessions):
        view = await assignments.create_assignment("Movies", ["because"], None, bearer=TOKEN)
        for _ in range(30):
            await sessions.open_session(view.join_key, ip="2.2.2.2")
        with pytest.raises(RateLimited):
            await sessions.open_session(view.join_key, ip="2.2.2.2")

    async def test_list_validation(self, sessions):
        with pytest.raises(ValidationError):
            await sessions.list_sessions(limit=0)
        with pytest.raises(ValidationError):
            await sessions.list_sessions(limit=101)
        with pytest.raises(ValidationError):
            await sessions.list_sessions(limit=10, offset=-1)

    async def test_delete_unknown(self, sessions):
        with pytest.raises(SessionNotFound):
            await sessions.delete_session("00000000-0000-0000-0000-000000000000")


# ─── Maintenance ─────────────────────────────────────────────────────────────

class TestMaintenance:
    def test_run_deletes_expired_rows(self, session_factory, make_session):
        fresh, stale = make_session(), make_session()
        now = datetime.now(timezone.utc)
        with transaction(session_factory) as db:
            idempotency.claim(db, fresh, "old", now=now - timedelta(days=8))
            idempotency.claim(db, fresh, "new", now=now)
            db.execute(update(Session).where(Session.id == stale).values(created_at=now - timedelta(days=31)))

        report = MaintenanceRunner(session_factory).run(timedelta(days=7), timedelta(days=30))

        assert report.skipped is False
        assert report.idempotency_deleted == 1
        assert report.sessions_deleted == 1
        with transaction(session_factory) as db:
            assert db.get(Session, stale) is None
            assert db.query(IdempotencyRecord).count() == 1

    def test_run_with_nothing_to_do(self, session_factory):
        report = MaintenanceRunner(session_factory).run()
        assert (report.skipped, report.idempotency_deleted, report.sessions_deleted) == (False, 0, 0)

    @pytest.mark.asyncio
    async def test_loop_keeps_running_after_unexpected_error(self):
        calls = []

        class FlakyRunner:
            def run(self):
                calls.append(1)
                if len(calls) == 1:
                    raise RuntimeError("disk full")
                return MaintenanceReport(skipped=True)

        task = asyncio.create_task(maintenance_loop(FlakyRunner(), initial_delay=0, period=0))
        try:
            for _ in range(200):
                if len(calls) >= 3:
                    break
                await asyncio.sleep(0.01)
        finally:
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert len(calls) >= 3


# ─── Pending Key Lifetime ────────────────────────────────────────────────────

class TestPendingTtl:
    def test_default_outlasts_llm_budget(self):
        assert IDEMPOTENCY_PENDING_TTL_SECONDS > LLM_TOTAL_TIMEOUT * (LLM_MAX_RETRIES + 1)

    def test_grows_with_slow_providers(self):
        assert pending_ttl_seconds(60, 2, 0.8) > 60 * 3 + 0.8 * 2
        assert pending_ttl_seconds(1, 0, 0.8) == 120
