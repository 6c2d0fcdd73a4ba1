"""
Shared fixtures: a fresh SQLite file per test, the mock LLM, and a
TestClient wired to both.
"""

import pytest
from fastapi.testclient import TestClient

from app.database import make_engine, make_session_factory, init_db, transaction
from app.main import create_app
from app.services.assignments import generate_join_key
from app.services.ingest import MessageIngestion
from app.services.rate_limiter import RateLimiter
from app.store import assignments as assignments_store
from app.store import sessions as sessions_store
from app.tutor.llm import MockLLM

TEACHER_TOKEN = "test-teacher-token"


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def llm():
    return MockLLM()


@pytest.fixture
def limiter():
    return RateLimiter()


@pytest.fixture
def ingestion(session_factory, llm, limiter):
    return MessageIngestion(session_factory, llm, limiter)


@pytest.fixture
def make_session(session_factory):
    """Create an assignment plus a session for it; returns the session id."""
    def _make(vocab=("because", "however"), topic="Movies", level=None):
        with transaction(session_factory) as db:
            a = assignments_store.insert_assignment(db, generate_join_key(), topic, list(vocab), level)
            return sessions_store.create_session(db, a.id, a.join_key, a.topic, a.vocab, a.level)
    return _make


@pytest.fixture
def client(session_factory, llm, limiter):
    app = create_app(
        session_factory=session_factory,
        llm=llm,
        rate_limiter=limiter,
        teacher_token=TEACHER_TOKEN,
        maintenance_enabled=False,
    )
    with TestClient(app) as c:
        yield c


@pytest.fixture
def teacher_headers():
    return {"Authorization": f"Bearer {TEACHER_TOKEN}"}
