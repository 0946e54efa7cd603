"""
Caller identity.

Credentials and sessions are handled upstream (gateway or auth service),
which forwards the authenticated user id in the ``X-User-Id`` header.
Every query in the service is scoped to that id.
"""
from typing import Optional

from fastapi import Header, HTTPException

IDENTITY_HEADER = "X-User-Id"


async def get_current_user(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail=f"Missing {IDENTITY_HEADER} header")
    return x_user_id.strip()
