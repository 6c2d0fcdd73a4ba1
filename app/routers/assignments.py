"""
Vocab Tutor — Assignments Router
Teachers create assignments (Bearer TEACHER_TOKEN); anyone can read one by id.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, field_validator

from app.config import MAX_TOPIC_CHARS, MAX_VOCAB_ITEMS
from app.routers.auth import bearer_token
from app.routers.deps import client_ip, parse_uuid, get_assignments

router = APIRouter(prefix="/v1/assignments", tags=["assignments"])


# ─── Request/Response Models ─────────────────────────────────────────────────

class CreateAssignmentRequest(BaseModel):
    topic: str = Field(max_length=MAX_TOPIC_CHARS)
    vocab: list[str] = Field(min_length=1, max_length=MAX_VOCAB_ITEMS)
    level: Optional[str] = None

    @field_validator("topic")
    @classmethod
    def topic_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("topic must not be blank")
        return v

    @field_validator("vocab")
    @classmethod
    def vocab_not_blank(cls, v: list[str]) -> list[str]:
        if any(not w.strip() for w in v):
            raise ValueError("vocab items must not be blank")
        return v


class CreateAssignmentResponse(BaseModel):
    assignment_id: str
    join_key: str


class AssignmentResponse(BaseModel):
    assignment_id: str
    join_key: str
    topic: str
    vocab: list[str]
    level: Optional[str] = None


# ─── Endpoints ───────────────────────────────────────────────────────────────

@router.post("", status_code=201, response_model=CreateAssignmentResponse)
async def create_assignment(
    req: CreateAssignmentRequest,
    request: Request,
    bearer: Optional[str] = Depends(bearer_token),
    service=Depends(get_assignments),
):
    view = await service.create_assignment(
        topic=req.topic,
        vocab=req.vocab,
        level=req.level,
        bearer=bearer,
        ip=client_ip(request),
    )
    return CreateAssignmentResponse(assignment_id=view.id, join_key=view.join_key)


@router.get("/{assignment_id}", response_model=AssignmentResponse)
async def get_assignment(assignment_id: str, service=Depends(get_assignments)):
    view = await service.get_assignment(parse_uuid(assignment_id, "assignment_id"))
    return AssignmentResponse(
        assignment_id=view.id,
        join_key=view.join_key,
        topic=view.topic,
        vocab=view.vocab,
        level=view.level,
    )
