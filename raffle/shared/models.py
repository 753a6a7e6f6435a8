"""SQLAlchemy ORM models for the raffle service."""
from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    SmallInteger,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from raffle.shared.database import Base


class SlotStatus(str, PyEnum):
    available = "available"
    reserved = "reserved"
    sold = "sold"


class ReservationStatus(str, PyEnum):
    active = "active"
    pending_payment = "pending_payment"
    paid = "paid"
    expired = "expired"
    cancelled = "cancelled"


class DrawStatus(str, PyEnum):
    open = "open"
    closed = "closed"


# Reservations still holding slots.
HOLDING_STATUSES = (ReservationStatus.active.value, ReservationStatus.pending_payment.value)


class User(Base):
    """Registered participant; ``is_admin`` grants the admin listing."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class Draw(Base):
    """One round of the raffle.  At most one is open at a time."""

    __tablename__ = "draws"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    status: Mapped[str] = mapped_column(
        Enum(*(s.value for s in DrawStatus), name="draw_status"),
        nullable=False,
        default="open",
    )
    opened_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Slot(Base):
    """One numbered unit of inventory within a draw.

    ``reservation_id`` is set exactly while ``status`` is ``reserved``.
    """

    __tablename__ = "slots"

    draw_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("draws.id", ondelete="CASCADE"), primary_key=True
    )
    number: Mapped[int] = mapped_column(SmallInteger, primary_key=True)
    status: Mapped[str] = mapped_column(
        Enum(*(s.value for s in SlotStatus), name="slot_status"),
        nullable=False,
        default="available",
    )
    reservation_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)


class Reservation(Base):
    """Time-bounded claim by a user over a set of slots."""

    __tablename__ = "reservations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    draw_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("draws.id", ondelete="CASCADE"), nullable=False
    )
    numbers: Mapped[list] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(
        Enum(*(s.value for s in ReservationStatus), name="reservation_status"),
        nullable=False,
        default="active",
        index=True,
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class Payment(Base):
    """PIX charge as reported by the provider, linked to its reservation."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    reservation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    status_detail: Mapped[str | None] = mapped_column(String(64), nullable=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    qr_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    qr_code_base64: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
