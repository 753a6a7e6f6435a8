"""Pydantic v2 request/response schemas for the raffle API."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ReservationRequest(BaseModel):
    """Request body for reserving numbers in the open draw."""

    numbers: list[int] = Field(default_factory=list)


class ReservationResponse(BaseModel):
    reservationId: str
    drawId: int
    expiresAt: datetime
    numbers: list[int]
    amountCents: int


class NumberState(BaseModel):
    n: int
    status: str


class NumbersResponse(BaseModel):
    drawId: int | None = None
    numbers: list[NumberState]


class DrawResponse(BaseModel):
    id: int
    status: str
    opened_at: datetime | None = None
    closed_at: datetime | None = None

    model_config = {"from_attributes": True}


class ReservationSummary(BaseModel):
    """One row of a reservation listing."""

    id: str
    draw_id: int
    numbers: list[int]
    amount_cents: int
    status: str
    created_at: datetime | None = None
    expires_at: datetime
    user_id: int | None = None
    email: str | None = None


class MyReservationsResponse(BaseModel):
    reservations: list[ReservationSummary]


class AdminReservationsResponse(BaseModel):
    reservations: list[ReservationSummary]
    total: int


class PixPaymentRequest(BaseModel):
    reservationId: str = Field(..., min_length=1)


class PixPaymentResponse(BaseModel):
    """Charge fields the client needs to render the PIX QR code."""

    id: str
    status: str
    qr_code: str | None = None
    qr_code_base64: str | None = None
    expires_in: int | None = None


class PaymentStatusResponse(BaseModel):
    paymentId: str
    status: str
    status_detail: str | None = None


class WebhookNotification(BaseModel):
    """Provider push payload; only the payment id is trusted."""

    type: str | None = None
    action: str | None = None
    data: dict[str, Any] | None = None


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserOut(BaseModel):
    id: int
    email: str
    name: str | None = None
    role: str = "user"


class AuthResponse(BaseModel):
    ok: bool = True
    token: str
    user: UserOut


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: str
    detail: str | None = None
