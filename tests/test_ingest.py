"""
Tests for the message ingestion pipeline, end to end against SQLite
with the mock LLM.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from app.config import MAX_IDEMPOTENCY_KEY_CHARS, RATE_POST_MESSAGE
from app.database import transaction
from app.errors import ConflictInProgress, RateLimited, SessionNotFound, UpstreamError, ValidationError
from app.models import ROLE_STUDENT, ROLE_TUTOR
from app.services.ingest import MessageIngestion
from app.store import idempotency
from app.store import messages as messages_store
from app.tutor.llm import MockLLM

pytestmark = pytest.mark.asyncio

MISSING_SESSION = "00000000-0000-0000-0000-000000000000"


class FailingLLM(MockLLM):
    async def tutor_reply(self, snapshot, student_text, used, missing) -> str:
        self.reply_calls += 1
        raise UpstreamError("openai", status=500, body_snippet="boom")


class SlowLLM(MockLLM):
    async def tutor_reply(self, snapshot, student_text, used, missing) -> str:
        self.reply_calls += 1
        await asyncio.sleep(0.2)
        return f"reply-{self.reply_calls}"


def _counts(session_factory, sid):
    with transaction(session_factory) as db:
        return (
            messages_store.count_by_role(db, sid, ROLE_STUDENT),
            messages_store.count_by_role(db, sid, ROLE_TUTOR),
        )


# ─── Happy Path ──────────────────────────────────────────────────────────────

class TestPostMessage:
    async def test_persists_student_then_tutor(self, ingestion, session_factory, make_session):
        sid = make_session()
        reply = await ingestion.post_message(sid, "  I like movies  ")

        with transaction(session_factory) as db:
            msgs = messages_store.list_messages(db, sid)
        assert [(m.role, m.content) for m in msgs] == [
            (ROLE_STUDENT, "I like movies"),
            (ROLE_TUTOR, reply.tutor_text),
        ]

    async def test_first_turn_has_no_hint_second_does(self, ingestion, make_session):
        sid = make_session(vocab=["because", "however"])

        first = await ingestion.post_message(sid, "I like movies")
        assert first.hint is None
        assert first.vocab_used == []
        assert first.vocab_missing == ["because", "however"]

        second = await ingestion.post_message(sid, "They are fun")
        assert second.hint == 'Try: "... because ..."'

    async def test_coverage_spans_all_student_turns(self, ingestion, make_session):
        sid = make_session(vocab=["because", "however"])
        await ingestion.post_message(sid, "I watched it because it was new")
        reply = await ingestion.post_message(sid, "It was long")

        assert reply.vocab_used == ["because"]
        assert reply.vocab_missing == ["however"]
        assert reply.hint == 'Try: "I liked it. However, ..."'

    async def test_no_hint_when_everything_used(self, ingestion, make_session):
        sid = make_session(vocab=["because", "however"])
        await ingestion.post_message(sid, "I liked it because of the music")
        reply = await ingestion.post_message(sid, "However, the ending was weak")

        assert reply.vocab_missing == []
        assert reply.hint is None

    async def test_unknown_session(self, ingestion):
        with pytest.raises(SessionNotFound):
            await ingestion.post_message(MISSING_SESSION, "hello")

    async def test_rate_limited_before_any_work(self, ingestion, limiter, llm, make_session, session_factory):
        sid = make_session()
        limit, window = RATE_POST_MESSAGE
        for _ in range(limit):
            limiter.allow(f"v1.sessions.messages.ip=1.2.3.4.session={sid}", limit, window)

        with pytest.raises(RateLimited):
            await ingestion.post_message(sid, "hello", ip="1.2.3.4")
        assert llm.reply_calls == 0
        assert _counts(session_factory, sid) == (0, 0)

        # Another ip is unaffected
        await ingestion.post_message(sid, "hello", ip="5.6.7.8")


# ─── Idempotency ─────────────────────────────────────────────────────────────

class TestIdempotentPost:
    async def test_replay_returns_same_reply_once(self, ingestion, llm, session_factory, make_session):
        sid = make_session()
        first = await ingestion.post_message(sid, "I like movies", idempotency_key="abc")
        again = await ingestion.post_message(sid, "I like movies", idempotency_key="abc")

        assert again == first
        assert llm.reply_calls == 1
        assert _counts(session_factory, sid) == (1, 1)

    async def test_key_is_trimmed(self, ingestion, llm, make_session):
        sid = make_session()
        first = await ingestion.post_message(sid, "hi", idempotency_key=" abc ")
        again = await ingestion.post_message(sid, "hi", idempotency_key="abc")
        assert again == first
        assert llm.reply_calls == 1

    async def test_blank_key_means_no_key(self, ingestion, session_factory, make_session):
        sid = make_session()
        await ingestion.post_message(sid, "hi", idempotency_key="   ")
        await ingestion.post_message(sid, "hi", idempotency_key="   ")
        assert _counts(session_factory, sid) == (2, 2)

    async def test_fresh_pending_key_conflicts(self, ingestion, llm, session_factory, make_session):
        sid = make_session()
        with transaction(session_factory) as db:
            idempotency.claim(db, sid, "busy")

        with pytest.raises(ConflictInProgress):
            await ingestion.post_message(sid, "hello", idempotency_key="busy")
        assert llm.reply_calls == 0
        assert _counts(session_factory, sid) == (0, 0)

    async def test_stale_pending_key_is_taken_over(self, ingestion, session_factory, make_session):
        sid = make_session()
        with transaction(session_factory) as db:
            idempotency.claim(db, sid, "abandoned", now=datetime.now(timezone.utc) - timedelta(minutes=5))

        reply = await ingestion.post_message(sid, "hello", idempotency_key="abandoned")
        assert _counts(session_factory, sid) == (1, 1)
        with transaction(session_factory) as db:
            assert idempotency.get(db, sid, "abandoned") == reply

    async def test_upstream_failure_leaves_key_pending(self, session_factory, limiter, make_session):
        sid = make_session()
        failing = FailingLLM()
        ingestion = MessageIngestion(session_factory, failing, limiter)

        with pytest.raises(UpstreamError):
            await ingestion.post_message(sid, "hello", idempotency_key="k")
        # Student turn is kept, no tutor turn
        assert _counts(session_factory, sid) == (1, 0)

        # Immediate retry finds the key still pending
        with pytest.raises(ConflictInProgress):
            await ingestion.post_message(sid, "hello", idempotency_key="k")
        assert failing.reply_calls == 1

    async def test_racing_retries_take_effect_once(self, session_factory, limiter, make_session):
        sid = make_session()
        slow = SlowLLM()
        ingestion = MessageIngestion(session_factory, slow, limiter)

        results = await asyncio.gather(
            *(ingestion.post_message(sid, "hi", idempotency_key="K") for _ in range(5)),
            return_exceptions=True,
        )

        replies = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, ConflictInProgress)]
        assert len(replies) == 1
        assert len(conflicts) == 4
        assert slow.reply_calls == 1
        assert _counts(session_factory, sid) == (1, 1)

        again = await ingestion.post_message(sid, "hi", idempotency_key="K")
        assert again == replies[0]
        assert slow.reply_calls == 1

    async def test_overlong_key_rejected(self, ingestion, llm, session_factory, make_session):
        sid = make_session()
        with pytest.raises(ValidationError):
            await ingestion.post_message(sid, "hi", idempotency_key="k" * (MAX_IDEMPOTENCY_KEY_CHARS + 1))
        assert llm.reply_calls == 0
        assert _counts(session_factory, sid) == (0, 0)

        await ingestion.post_message(sid, "hi", idempotency_key="k" * MAX_IDEMPOTENCY_KEY_CHARS)
        assert _counts(session_factory, sid) == (1, 1)

    async def test_nested_call_inside_transaction_is_rejected(self, ingestion, session_factory, make_session):
        sid = make_session()
        with transaction(session_factory):
            with pytest.raises(RuntimeError):
                await ingestion.post_message(sid, "hello")
