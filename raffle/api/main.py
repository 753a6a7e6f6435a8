"""
Raffle reservation API.

Users reserve numbered slots of the open draw and pay for them by PIX.
Slot claims are arbitrated by conditional writes in the database, so any
number of workers can serve requests against the same store.

Startup: create tables, make sure a draw is open, seed the admin account,
start the periodic expiry sweep.  Shutdown reverses it.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncGenerator

import structlog
import uvicorn
from fastapi import FastAPI
from prometheus_client import make_asgi_app
from sqlalchemy import func, select

from raffle.api import admin_routes, auth_routes, payment_routes
from raffle.api.routes import router
from raffle.core.payments import PaymentBridge
from raffle.core.reservations import ReservationManager
from raffle.core.rollover import ensure_open_draw
from raffle.core.sweeper import start_sweeper
from raffle.providers.mercadopago import MercadoPagoClient
from raffle.shared.config import Settings
from raffle.shared.database import Database
from raffle.shared.errors import register_error_handlers
from raffle.shared.middleware import IdempotencyMiddleware
from raffle.shared.models import User
from raffle.shared.redis_client import close_redis, configure_redis
from raffle.shared.security import hash_password

logger = structlog.get_logger(__name__)


def configure_logging(level: str) -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
    )


async def _seed(db: Database, settings: Settings) -> None:
    async with db.sessions() as session:
        async with session.begin():
            draw = await ensure_open_draw(session, settings.draw_size)
            logger.info("open_draw_ready", draw_id=draw.id)

            if settings.admin_email and settings.admin_password:
                email = settings.admin_email.strip().lower()
                exists = await session.scalar(
                    select(User.id).where(func.lower(User.email) == email)
                )
                if exists is None:
                    session.add(
                        User(
                            name="Admin",
                            email=email,
                            password_hash=hash_password(settings.admin_password),
                            is_admin=True,
                        )
                    )
                    logger.info("admin_seeded", email=email)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: prepare storage on startup, release it on shutdown."""
    settings: Settings = app.state.settings
    db: Database = app.state.db
    logger.info("raffle_api_startup")
    await db.create_all()
    await _seed(db, settings)

    sweeper: asyncio.Task | None = None
    if settings.sweep_interval_sec > 0:
        sweeper = asyncio.create_task(
            start_sweeper(app.state.manager, settings.sweep_interval_sec)
        )
    yield
    if sweeper:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
    if app.state.owns_gateway:
        await app.state.gateway.aclose()
    if settings.redis_url:
        await close_redis()
    await db.dispose()
    logger.info("raffle_api_shutdown")


def create_app(settings: Settings | None = None, gateway=None) -> FastAPI:
    """Build the API with its storage handle and collaborators attached."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    db = Database(settings.database_url)
    manager = ReservationManager(
        db.sessions,
        ttl=timedelta(minutes=settings.reservation_ttl_min),
        draw_size=settings.draw_size,
        price_cents=settings.price_cents,
    )
    owns_gateway = gateway is None
    if gateway is None:
        if not settings.mp_access_token:
            logger.warning("mp_access_token_missing")
        gateway = MercadoPagoClient(
            settings.mp_access_token,
            base_url=settings.mp_base_url,
            timeout=settings.mp_timeout_sec,
            default_expires_in=settings.pix_expires_in_sec,
        )

    app = FastAPI(
        title="Raffle Reservation API",
        description=(
            "Reserve numbers of the open draw, pay by PIX, and let sold-out "
            "draws roll over to a fresh inventory."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db = db
    app.state.manager = manager
    app.state.gateway = gateway
    app.state.owns_gateway = owns_gateway
    app.state.bridge = PaymentBridge(db.sessions, manager, gateway)

    register_error_handlers(app)
    if settings.redis_url:
        configure_redis(settings.redis_url)
        app.add_middleware(IdempotencyMiddleware, cookie_name=settings.auth_cookie_name)

    # Prometheus metrics endpoint
    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)

    app.include_router(router)
    app.include_router(auth_routes.router)
    app.include_router(payment_routes.router)
    app.include_router(admin_routes.router)
    return app


if __name__ == "__main__":
    uvicorn.run("raffle.api.main:create_app", factory=True, host="0.0.0.0", port=8000)
