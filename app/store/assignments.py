"""
Vocab Tutor — Assignments (Insert/Read)
The unique index on join_key is the real uniqueness guarantee; callers retry
on IntegrityError.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session as DBSession

from app.models import Assignment
from app.state.session import AssignmentView


def _view(row: Assignment) -> AssignmentView:
    return AssignmentView(
        id=row.id,
        join_key=row.join_key,
        topic=row.topic,
        vocab=list(row.vocab or []),
        level=row.level,
    )


def insert_assignment(
    db: DBSession,
    join_key: str,
    topic: str,
    vocab: list[str],
    level: Optional[str],
) -> AssignmentView:
    row = Assignment(join_key=join_key, topic=topic, vocab=list(vocab), level=level)
    db.add(row)
    db.flush()  # surfaces IntegrityError on a join_key collision
    return _view(row)


def get_by_id(db: DBSession, assignment_id: str) -> Optional[AssignmentView]:
    row = db.get(Assignment, assignment_id)
    return _view(row) if row else None


def get_by_join_key(db: DBSession, join_key: str) -> Optional[AssignmentView]:
    row = db.execute(
        select(Assignment).where(Assignment.join_key == join_key)
    ).scalar_one_or_none()
    return _view(row) if row else None
