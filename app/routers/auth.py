"""
Vocab Tutor — Bearer Token Extraction
Only pulls the token out of the header. Whether it is a teacher token is
decided by TeacherAuth in the service layer, after rate limiting.
"""

from typing import Optional

from fastapi import Request


def bearer_token(request: Request) -> Optional[str]:
    """FastAPI dependency: the token from `Authorization: Bearer <token>`, or None."""
    auth = request.headers.get("Authorization", "")
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
