"""
Vocab Tutor — Router Dependencies
Services live on app.state (built by the lifespan); routers pull them from
there so tests can build an app around their own database and LLM.
"""

import uuid

from fastapi import Request

from app.errors import ValidationError


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop if behind a proxy, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    return request.client.host if request.client else "unknown"


def parse_uuid(value: str, name: str = "id") -> str:
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise ValidationError(f"Invalid {name}", details={name: value})


def get_assignments(request: Request):
    return request.app.state.assignments


def get_sessions(request: Request):
    return request.app.state.sessions


def get_ingestion(request: Request):
    return request.app.state.ingestion


def get_llm(request: Request):
    return request.app.state.llm
