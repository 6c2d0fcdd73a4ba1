"""
Vocab Tutor — Sessions Router
Students open a session with a join key, then chat in it.
POST /messages accepts an optional Idempotency-Key header; a retry with the
same key gets the stored reply instead of a second tutor turn.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response
from pydantic import BaseModel, Field, field_validator

from app.config import JOIN_KEY_MIN_CHARS, JOIN_KEY_MAX_CHARS, MAX_MESSAGE_CHARS
from app.routers.deps import client_ip, parse_uuid, get_sessions, get_ingestion

router = APIRouter(prefix="/v1/sessions", tags=["sessions"])


# ─── Request/Response Models ─────────────────────────────────────────────────

class OpenSessionRequest(BaseModel):
    join_key: str = Field(min_length=JOIN_KEY_MIN_CHARS, max_length=JOIN_KEY_MAX_CHARS)


class PostMessageRequest(BaseModel):
    text: str = Field(max_length=MAX_MESSAGE_CHARS)

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be blank")
        return v


class MessageDTO(BaseModel):
    role: str
    content: str


class SessionResponse(BaseModel):
    session_id: str
    assignment_id: str
    join_key: str
    topic: str
    vocab: list[str]
    level: Optional[str] = None
    messages: list[MessageDTO]


class TutorReplyResponse(BaseModel):
    tutor_text: str
    hint: Optional[str] = None
    vocab_used: list[str]
    vocab_missing: list[str]


class SessionSummaryDTO(BaseModel):
    session_id: str
    assignment_id: str
    join_key: str
    topic: str
    vocab: list[str]
    message_count: int


class ListSessionsResponse(BaseModel):
    items: list[SessionSummaryDTO]
    limit: int
    offset: int


# ─── Endpoints ───────────────────────────────────────────────────────────────

@router.post("/open", status_code=201, response_model=SessionResponse)
async def open_session(req: OpenSessionRequest, request: Request, service=Depends(get_sessions)):
    snapshot = await service.open_session(req.join_key, ip=client_ip(request))
    return snapshot.to_dict()


@router.post("/{session_id}/messages", response_model=TutorReplyResponse)
async def post_message(
    session_id: str,
    req: PostMessageRequest,
    request: Request,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    ingestion=Depends(get_ingestion),
):
    reply = await ingestion.post_message(
        parse_uuid(session_id, "session_id"),
        req.text,
        idempotency_key=idempotency_key,
        ip=client_ip(request),
    )
    return reply.to_dict()


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, service=Depends(get_sessions)):
    snapshot = await service.get_session(parse_uuid(session_id, "session_id"))
    return snapshot.to_dict()


@router.get("", response_model=ListSessionsResponse)
async def list_sessions(limit: int = 20, offset: int = 0, service=Depends(get_sessions)):
    items = await service.list_sessions(limit, offset)
    return ListSessionsResponse(
        items=[SessionSummaryDTO(**vars(s)) for s in items],
        limit=limit,
        offset=offset,
    )


@router.delete("/{session_id}", status_code=204)
async def delete_session(session_id: str, service=Depends(get_sessions)):
    await service.delete_session(parse_uuid(session_id, "session_id"))
    return Response(status_code=204)
