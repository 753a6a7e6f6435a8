"""Error taxonomy and FastAPI exception handlers.

Client conflicts and authorization failures are 4xx and never retried.
Storage and provider outages are 503 so callers can tell them apart from
a rejected request.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError

logger = structlog.get_logger(__name__)


@dataclass(eq=False)
class AppError(Exception):
    """Base application error."""

    code: str
    message: str
    status_code: int
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class NoNumbers(AppError):
    def __init__(self) -> None:
        super().__init__("no_numbers", "No numbers requested", 400)


class InvalidNumbers(AppError):
    def __init__(self, numbers: list[Any]) -> None:
        super().__init__(
            "invalid_numbers", "Numbers outside the draw range", 400, {"numbers": numbers}
        )


class NoOpenDraw(AppError):
    def __init__(self) -> None:
        super().__init__("no_open_draw", "There is no open draw", 400)


class NumberUnavailable(AppError):
    def __init__(self, number: int) -> None:
        super().__init__("unavailable", f"Number {number} is not available", 409, {"n": number})
        self.number = number


class ReservationNotFound(AppError):
    def __init__(self) -> None:
        super().__init__("reservation_not_found", "Reservation not found", 404)


class NotReservationOwner(AppError):
    def __init__(self) -> None:
        super().__init__("forbidden", "Reservation belongs to another user", 403)


class ReservationStatusConflict(AppError):
    def __init__(self, status: str) -> None:
        super().__init__(
            "reservation_status", f"Reservation is {status}", 409, {"status": status}
        )


class PaymentNotFound(AppError):
    def __init__(self) -> None:
        super().__init__("payment_not_found", "Payment not found", 404)


class Unauthorized(AppError):
    def __init__(self) -> None:
        super().__init__("unauthorized", "Authentication required", 401)


class Forbidden(AppError):
    def __init__(self) -> None:
        super().__init__("forbidden", "Not allowed", 403)


class EmailInUse(AppError):
    def __init__(self) -> None:
        super().__init__("email_in_use", "Email already registered", 409)


class InvalidCredentials(AppError):
    def __init__(self) -> None:
        super().__init__("invalid_credentials", "Invalid email or password", 401)


class PaymentProviderError(AppError):
    """Provider unreachable or answered with an error."""

    def __init__(self, message: str = "Payment provider unavailable", **details: Any) -> None:
        super().__init__("payment_unavailable", message, 503, details)


def _error_body(code: str, message: str, details: dict[str, Any] | None = None) -> dict:
    return {"error": code, "detail": message, **(details or {})}


def register_error_handlers(app: FastAPI) -> None:
    """Map the taxonomy onto JSON responses."""

    @app.exception_handler(AppError)
    async def _handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=exc.code)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.code, exc.message, exc.details),
        )

    @app.exception_handler(RequestValidationError)
    async def _handle_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content=_error_body("invalid_payload", "Invalid request body", {"errors": errors}),
        )

    @app.exception_handler(OperationalError)
    @app.exception_handler(InterfaceError)
    async def _handle_storage_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("storage_unavailable", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=503,
            content=_error_body("storage_unavailable", "Storage unavailable"),
        )
