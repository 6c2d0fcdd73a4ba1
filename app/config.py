"""
Vocab Tutor — Configuration
All environment variables and constants. Single source of truth.
No other file reads os.environ directly.
"""

import math
import os
from pathlib import Path

from dotenv import load_dotenv

# ─── Paths ───────────────────────────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env file if present (real environment wins)
load_dotenv(BASE_DIR / ".env", override=False)

# ─── Database ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite:///{BASE_DIR / 'vocab_tutor.db'}"
)
# Hosted Postgres often hands out "postgres://", which SQLAlchemy rejects.
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "5"))
SQLITE_BUSY_TIMEOUT_SECONDS = float(os.getenv("SQLITE_BUSY_TIMEOUT_SECONDS", "30"))

# ─── LLM Provider ────────────────────────────────────────────────────────────
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "mock").lower()
# Options: mock (offline, deterministic) | openai | ollama

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4.1-mini")
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "200"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.6"))
LLM_OPENER_TEMPERATURE = float(os.getenv("LLM_OPENER_TEMPERATURE", "0.4"))

OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434").rstrip("/")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "qwen2.5:7b")

# Transport hardening for every provider
LLM_CONNECT_TIMEOUT = float(os.getenv("LLM_CONNECT_TIMEOUT", "5"))
LLM_READ_TIMEOUT = float(os.getenv("LLM_READ_TIMEOUT", "20"))
LLM_TOTAL_TIMEOUT = float(os.getenv("LLM_TOTAL_TIMEOUT", "25"))
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "2"))
LLM_RETRY_BASE_DELAY = 0.2   # seconds, multiplied by attempt number
LLM_RETRY_MAX_DELAY = 0.8
LLM_BODY_SNIPPET_CHARS = 800

# Used whenever the provider returns nothing usable for the opener
FALLBACK_OPENER = "Let's start with something simple. What comes to mind first?"

# ─── Teacher Auth ────────────────────────────────────────────────────────────
# Unset or blank means assignment creation is closed for everyone.
TEACHER_TOKEN = os.getenv("TEACHER_TOKEN", "").strip()

# ─── Join Keys ───────────────────────────────────────────────────────────────
JOIN_KEY_ALPHABET = "ABCDEFGHJKMNPQRSTVWXYZ23456789"  # no I, L, O, U, 0, 1
JOIN_KEY_LENGTH = 6
JOIN_KEY_MAX_ATTEMPTS = 10

# ─── Rate Limits (limit, window seconds) ─────────────────────────────────────
RATE_POST_MESSAGE = (60, 60.0)
RATE_OPEN_SESSION = (30, 60.0)
RATE_CREATE_ASSIGNMENT = (10, 60.0)

# ─── Conversation Windows ────────────────────────────────────────────────────
LLM_CONTEXT_MESSAGES = 60       # snapshot size handed to the LLM
COVERAGE_STUDENT_MESSAGES = 80  # student turns scanned for vocabulary coverage
HINT_MIN_STUDENT_TURNS = 2
PROMPT_HISTORY_MESSAGES = 10    # dialogue lines actually rendered into prompts

# ─── Idempotency ─────────────────────────────────────────────────────────────
def pending_ttl_seconds(total_timeout: float, max_retries: int, retry_max_delay: float, floor: int = 120) -> int:
    """Pending-key lifetime that outlasts the slowest possible LLM call plus margin."""
    budget = total_timeout * (max_retries + 1) + retry_max_delay * max_retries
    return max(floor, math.ceil(budget) + 30)


# A takeover must never race a live owner still waiting on the provider
IDEMPOTENCY_PENDING_TTL_SECONDS = pending_ttl_seconds(LLM_TOTAL_TIMEOUT, LLM_MAX_RETRIES, LLM_RETRY_MAX_DELAY)
MAX_IDEMPOTENCY_KEY_CHARS = 200
IDEMPOTENCY_CLEANUP_ENABLED = os.getenv(
    "IDEMPOTENCY_CLEANUP_ENABLED", "true"
).strip().lower() in ("1", "true", "yes")
IDEMPOTENCY_TTL_DAYS = max(1, int(os.getenv("IDEMPOTENCY_TTL_DAYS", "7")))
IDEMPOTENCY_CLEANUP_EVERY_MIN = max(1, int(os.getenv("IDEMPOTENCY_CLEANUP_EVERY_MIN", "60")))
MAINTENANCE_INITIAL_DELAY_SECONDS = 15
SESSIONS_TTL_DAYS = max(1, int(os.getenv("SESSIONS_TTL_DAYS", "30")))
MAINTENANCE_LOCK_KEY = 4242424242

# ─── Request Validation ──────────────────────────────────────────────────────
MAX_TOPIC_CHARS = 200
MAX_VOCAB_ITEMS = 50
JOIN_KEY_MIN_CHARS = 4
JOIN_KEY_MAX_CHARS = 12
MAX_MESSAGE_CHARS = 2000
MAX_LIST_LIMIT = 100

# ─── CORS ────────────────────────────────────────────────────────────────────
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

# ─── Logging ─────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
