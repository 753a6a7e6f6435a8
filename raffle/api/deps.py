"""FastAPI dependencies: app-scoped collaborators and caller identity."""
from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from raffle.core.payments import PaymentBridge
from raffle.core.reservations import ReservationManager
from raffle.shared.config import Settings
from raffle.shared.database import get_db
from raffle.shared.errors import Forbidden, Unauthorized
from raffle.shared.models import User
from raffle.shared.security import Identity, decode_token


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_manager(request: Request) -> ReservationManager:
    return request.app.state.manager


def get_bridge(request: Request) -> PaymentBridge:
    return request.app.state.bridge


def _token_from_request(request: Request, cookie_name: str) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.cookies.get(cookie_name)


async def get_current_user(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> Identity:
    """Resolve the caller from a bearer token or the auth cookie."""
    token = _token_from_request(request, settings.auth_cookie_name)
    if not token:
        raise Unauthorized()
    identity = decode_token(token, settings.jwt_secret)
    if identity is None:
        raise Unauthorized()
    return identity


async def require_admin(
    identity: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Identity:
    """Admin rights come from the users table, not from token claims."""
    is_admin = await db.scalar(select(User.is_admin).where(User.id == identity.id))
    if not is_admin:
        raise Forbidden()
    return identity
