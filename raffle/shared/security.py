"""Password hashing and bearer tokens."""
from __future__ import annotations

import time
from dataclasses import dataclass

import bcrypt
import jwt

ALGORITHM = "HS256"


@dataclass(frozen=True)
class Identity:
    """The authenticated caller as carried in the token."""

    id: int
    email: str | None = None
    name: str | None = None
    role: str = "user"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=10)).decode()


def verify_password(password: str, hashed: str | None) -> bool:
    if not hashed or not hashed.startswith("$2"):
        return False
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        return False


def issue_token(identity: Identity, secret: str, ttl_sec: int) -> str:
    now = int(time.time())
    claims = {
        "sub": str(identity.id),
        "email": identity.email,
        "name": identity.name,
        "role": identity.role,
        "iat": now,
        "exp": now + ttl_sec,
    }
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> Identity | None:
    """Verify ``token``; ``None`` for anything invalid or expired."""
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
        user_id = int(claims["sub"])
    except (jwt.PyJWTError, KeyError, TypeError, ValueError):
        return None
    return Identity(
        id=user_id,
        email=claims.get("email"),
        name=claims.get("name"),
        role=claims.get("role") or "user",
    )
