"""
Vocab Tutor — Maintenance
Periodic cleanup: old idempotency rows and expired sessions.

On PostgreSQL only one process cleans at a time (advisory lock); the others
report skipped. SQLite has a single writer anyway.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import text
from sqlalchemy.orm import sessionmaker

from app.config import (
    IDEMPOTENCY_TTL_DAYS, SESSIONS_TTL_DAYS, IDEMPOTENCY_CLEANUP_EVERY_MIN,
    MAINTENANCE_INITIAL_DELAY_SECONDS, MAINTENANCE_LOCK_KEY,
)
from app.database import transaction, is_postgres, run_db
from app.store import idempotency, sessions as sessions_store

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceReport:
    skipped: bool
    idempotency_deleted: int = 0
    sessions_deleted: int = 0


class MaintenanceRunner:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def run(
        self,
        idem_ttl: timedelta = timedelta(days=IDEMPOTENCY_TTL_DAYS),
        sessions_ttl: timedelta = timedelta(days=SESSIONS_TTL_DAYS),
    ) -> MaintenanceReport:
        with transaction(self.session_factory) as db:
            postgres = is_postgres(db)
            if postgres:
                # Transaction-scoped, released at commit/rollback
                locked = db.execute(
                    text("SELECT pg_try_advisory_xact_lock(:key)"), {"key": MAINTENANCE_LOCK_KEY}
                ).scalar()
                if not locked:
                    logger.info("Maintenance skipped: another process holds the lock")
                    return MaintenanceReport(skipped=True)

            idem_deleted = idempotency.cleanup_older_than(db, idem_ttl)
            sessions_deleted = sessions_store.cleanup_older_than(db, sessions_ttl)

        return MaintenanceReport(
            skipped=False,
            idempotency_deleted=idem_deleted,
            sessions_deleted=sessions_deleted,
        )


async def maintenance_loop(
    runner: MaintenanceRunner,
    initial_delay: float = MAINTENANCE_INITIAL_DELAY_SECONDS,
    period: float = IDEMPOTENCY_CLEANUP_EVERY_MIN * 60,
) -> None:
    """Background task started by the app lifespan. Cancelled on shutdown."""
    await asyncio.sleep(initial_delay)
    while True:
        try:
            report = await run_db(runner.run)
            if not report.skipped:
                logger.info(
                    f"Maintenance: deleted {report.idempotency_deleted} idempotency rows, "
                    f"{report.sessions_deleted} sessions"
                )
        except Exception:
            logger.exception("Maintenance run failed, retrying next period")
        await asyncio.sleep(period)
