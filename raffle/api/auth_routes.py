"""Registration, login and session cookie handling."""
from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Response
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from raffle.api.deps import get_current_user, get_settings
from raffle.shared.config import Settings
from raffle.shared.database import get_db
from raffle.shared.errors import EmailInUse, InvalidCredentials
from raffle.shared.models import User
from raffle.shared.schemas import AuthResponse, LoginRequest, RegisterRequest, UserOut
from raffle.shared.security import Identity, hash_password, issue_token, verify_password

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _set_auth_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        settings.auth_cookie_name,
        token,
        max_age=settings.jwt_ttl_sec,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="none" if settings.cookie_secure else "lax",
        path="/",
    )


def _identity_for(user: User) -> Identity:
    return Identity(
        id=user.id,
        email=user.email,
        name=user.name,
        role="admin" if user.is_admin else "user",
    )


@router.post("/register", response_model=AuthResponse, summary="Create an account")
async def register(
    body: RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> AuthResponse:
    email = body.email.strip().lower()
    existing = await db.scalar(select(User.id).where(func.lower(User.email) == email))
    if existing is not None:
        raise EmailInUse()

    user = User(name=body.name.strip(), email=email, password_hash=hash_password(body.password))
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        raise EmailInUse() from None

    identity = _identity_for(user)
    token = issue_token(identity, settings.jwt_secret, settings.jwt_ttl_sec)
    _set_auth_cookie(response, token, settings)
    logger.info("user_registered", user_id=user.id)
    return AuthResponse(
        token=token,
        user=UserOut(id=user.id, email=user.email, name=user.name, role=identity.role),
    )


@router.post("/login", response_model=AuthResponse, summary="Exchange credentials for a token")
async def login(
    body: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> AuthResponse:
    email = body.email.strip().lower()
    user = await db.scalar(select(User).where(func.lower(User.email) == email))
    if user is None or not verify_password(body.password, user.password_hash):
        raise InvalidCredentials()

    identity = _identity_for(user)
    token = issue_token(identity, settings.jwt_secret, settings.jwt_ttl_sec)
    _set_auth_cookie(response, token, settings)
    return AuthResponse(
        token=token,
        user=UserOut(id=user.id, email=user.email, name=user.name, role=identity.role),
    )


@router.post("/logout", summary="Clear the session cookie")
async def logout(response: Response, settings: Settings = Depends(get_settings)) -> dict:
    response.delete_cookie(settings.auth_cookie_name, path="/")
    return {"ok": True}


@router.get("/me", summary="Current identity")
async def me(identity: Identity = Depends(get_current_user)) -> dict:
    return {
        "ok": True,
        "user": {
            "id": identity.id,
            "email": identity.email,
            "name": identity.name,
            "role": identity.role,
        },
    }
