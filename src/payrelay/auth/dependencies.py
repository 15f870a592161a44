"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current account from the request.

Two ways to present the access token:
1. Authorization: Bearer <token> (API calls, CLI)
2. ?token=<token> query param — only on the /events stream, because the
   browser's EventSource can't set headers
"""

import uuid
from typing import Optional

from fastapi import Depends, HTTPException, Header, Query

from payrelay.auth.jwt import TokenError, verify_token


class CurrentAccount:
    """The authenticated account making the request."""

    def __init__(self, account_id: str, email: Optional[str] = None):
        self.account_id = account_id
        self.email = email

    @property
    def uuid(self) -> uuid.UUID:
        return uuid.UUID(self.account_id)


def _authenticate_jwt(token: str) -> CurrentAccount:
    try:
        payload = verify_token(token)
        account_id = str(uuid.UUID(payload["sub"]))
        return CurrentAccount(account_id=account_id, email=payload.get("email"))
    except (TokenError, ValueError) as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:]
    return None


async def get_current_account_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentAccount]:
    token = _bearer(authorization)
    return _authenticate_jwt(token) if token else None


async def get_current_account(
    account: Optional[CurrentAccount] = Depends(get_current_account_optional),
) -> CurrentAccount:
    """Required auth — 401 if no token."""
    if not account:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return account


async def get_stream_account(
    authorization: Optional[str] = Header(None),
    token: Optional[str] = Query(None),
) -> CurrentAccount:
    """Like get_current_account, but also accepts ?token= for EventSource."""
    raw = _bearer(authorization) or token
    if not raw:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _authenticate_jwt(raw)
