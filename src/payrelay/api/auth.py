"""Auth API — merchant registration and login.

Learn: Routes for account authentication:
- POST /auth/register → create a merchant account
- POST /auth/login → email/password → JWT tokens
- POST /auth/refresh → refresh token → new token pair
- GET /auth/me → current account info
"""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.auth.dependencies import CurrentAccount, get_current_account
from payrelay.auth.jwt import (
    REFRESH,
    TokenError,
    create_access_token,
    create_refresh_token,
    verify_token,
)
from payrelay.auth.password import hash_password, verify_password
from payrelay.db.engine import get_db
from payrelay.db.models import Account

router = APIRouter(prefix="/auth")


# ─── Schemas ─────────────────────────────────────────────


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8)


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


class AccountRead(BaseModel):
    id: uuid.UUID
    email: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


def _issue_tokens(account: Account) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(str(account.id), email=account.email),
        refresh_token=create_refresh_token(str(account.id)),
    )


# ─── Routes ──────────────────────────────────────────────


@router.post("/register", response_model=AccountRead, status_code=201)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Create a new merchant account."""
    email = body.email.strip().lower()
    account = Account(email=email, password_hash=hash_password(body.password))
    db.add(account)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="Email already registered")
    await db.refresh(account)
    return account


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Login with email and password → JWT tokens."""
    result = await db.execute(
        select(Account).where(Account.email == body.email.strip().lower())
    )
    account = result.scalars().first()
    if not account or not verify_password(body.password, account.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _issue_tokens(account)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, db: AsyncSession = Depends(get_db)):
    """Exchange a refresh token for a new token pair."""
    try:
        payload = verify_token(body.refresh_token, expected_type=REFRESH)
        account = await db.get(Account, uuid.UUID(payload["sub"]))
    except (TokenError, ValueError) as e:
        raise HTTPException(status_code=401, detail=str(e))
    if not account:
        raise HTTPException(status_code=401, detail="Account no longer exists")
    return _issue_tokens(account)


@router.get("/me", response_model=AccountRead)
async def get_me(
    current: CurrentAccount = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    account = await db.get(Account, current.uuid)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account
