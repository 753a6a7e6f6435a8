"""Replay middleware that caches responses by X-Idempotency-Key header."""
from __future__ import annotations

import hashlib
import json
from typing import Callable

import structlog
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from raffle.shared.redis_client import get_redis

logger = structlog.get_logger(__name__)

REPLAY_TTL = 86400  # 24 hours


def _caller_fingerprint(request: Request, cookie_name: str) -> str:
    credential = request.headers.get("Authorization") or request.cookies.get(cookie_name) or ""
    return hashlib.sha256(credential.encode()).hexdigest()[:16]


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """
    Replays the stored response of a POST that carried the same key.

    Workflow:
    1. Read X-Idempotency-Key header on POST requests.
    2. If absent: pass through unchanged.
    3. Build cache key "idem:{key}:{path}:{caller}".
    4. On cache hit: return stored response with X-Idempotency-Replay: true.
    5. On cache miss: call next handler, cache 2xx responses for 24 h.

    A retried POST /reservations therefore gets its original reservation
    back instead of a 409 on its own numbers.
    """

    def __init__(
        self,
        app: ASGIApp,
        redis_factory: Callable = get_redis,
        cookie_name: str = "ns_auth",
    ) -> None:
        super().__init__(app)
        self._redis_factory = redis_factory
        self._cookie_name = cookie_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        idem_key = request.headers.get("X-Idempotency-Key")

        if not idem_key or request.method != "POST":
            return await call_next(request)

        redis = self._redis_factory()
        caller = _caller_fingerprint(request, self._cookie_name)
        cache_key = f"idem:{idem_key}:{request.url.path}:{caller}"

        # --- Cache hit ---
        try:
            cached = await redis.get(cache_key)
        except RedisError as exc:
            logger.warning("idempotency_cache_unavailable", key=idem_key, error=str(exc))
            return await call_next(request)
        if cached:
            data = json.loads(cached)
            logger.info(
                "idempotency_cache_hit",
                key=idem_key,
                path=request.url.path,
            )
            response = JSONResponse(
                content=data["body"],
                status_code=data["status_code"],
            )
            response.headers["X-Idempotency-Replay"] = "true"
            return response

        # --- Cache miss: execute request ---
        response: Response = await call_next(request)

        if not 200 <= response.status_code < 300:
            return response

        body_bytes = b""
        async for chunk in response.body_iterator:  # type: ignore[attr-defined]
            body_bytes += chunk

        try:
            payload = json.dumps(
                {"body": json.loads(body_bytes), "status_code": response.status_code}
            )
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning("idempotency_cache_skip", key=idem_key, error=str(exc))
        else:
            try:
                await redis.setex(cache_key, REPLAY_TTL, payload)
            except RedisError as exc:
                logger.warning("idempotency_cache_set_failed", key=idem_key, error=str(exc))
            else:
                logger.info(
                    "idempotency_cache_set",
                    key=idem_key,
                    path=request.url.path,
                    status_code=response.status_code,
                )

        return Response(
            content=body_bytes,
            status_code=response.status_code,
            headers=dict(response.headers),
            media_type=response.media_type,
        )
