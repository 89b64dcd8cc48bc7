# src/infrastructure/db/models.py

from datetime import datetime
from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.db.session import Base


class SeatStatus(str, PyEnum):
    AVAILABLE = "AVAILABLE"
    HELD = "HELD"
    BOOKED = "BOOKED"


class HoldStatus(str, PyEnum):
    ACTIVE = "ACTIVE"
    CONSUMED = "CONSUMED"
    EXPIRED = "EXPIRED"


class OrderStatus(str, PyEnum):
    CREATED = "CREATED"
    PAID = "PAID"


def _uuid() -> str:
    return str(uuid4())


class Trip(Base):
    """A scheduled bus run that can be searched and booked."""

    __tablename__ = "trips"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    operator_name: Mapped[str] = mapped_column(String(128), nullable=False)
    bus_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    origin: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    destination: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    departure_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    arrival_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    base_fare_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("base_fare_paise >= 0", name="ck_trip_fare_nonnegative"),
    )


class Seat(Base):
    __tablename__ = "seats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    trip_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("trips.id"),
        nullable=False,
        index=True,
    )
    seat_number: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    deck: Mapped[str | None] = mapped_column(String(16), nullable=True)
    price_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[SeatStatus] = mapped_column(
        Enum(SeatStatus, name="seat_status"),
        nullable=False,
        default=SeatStatus.AVAILABLE,
    )
    hold_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("trip_id", "seat_number", name="uq_trip_seat_number"),
        CheckConstraint("price_paise >= 0", name="ck_seat_price_nonnegative"),
    )


class SeatHold(Base):
    """
    Time-boxed exclusive reservation of seats.
    Consumed by exactly one booking or left to expire.
    """

    __tablename__ = "seat_holds"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    trip_id: Mapped[str] = mapped_column(String(36), ForeignKey("trips.id"), nullable=False)
    seat_numbers: Mapped[list] = mapped_column(JSON, nullable=False)
    manifest: Mapped[list] = mapped_column(JSON, nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False)
    amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="INR")
    status: Mapped[HoldStatus] = mapped_column(
        Enum(HoldStatus, name="hold_status"),
        nullable=False,
        default=HoldStatus.ACTIVE,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_hold_idempotency_key"),
        CheckConstraint("amount_paise >= 0", name="ck_hold_amount_nonnegative"),
    )


class PaymentOrder(Base):
    __tablename__ = "payment_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    hold_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("seat_holds.id"),
        nullable=False,
        index=True,
    )
    gateway_order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="INR")
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status"),
        nullable=False,
        default=OrderStatus.CREATED,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("gateway_order_id", name="uq_payment_order_gateway_id"),
    )


class Booking(Base):
    """
    Durable, ticketed outcome. One per hold, one per payment.
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    confirmation_code: Mapped[str] = mapped_column(String(16), nullable=False)
    hold_id: Mapped[str] = mapped_column(String(36), ForeignKey("seat_holds.id"), nullable=False)
    payment_id: Mapped[str] = mapped_column(String(64), nullable=False)
    gateway_order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payment_signature: Mapped[str] = mapped_column(String(255), nullable=False)
    trip_id: Mapped[str] = mapped_column(String(36), ForeignKey("trips.id"), nullable=False)
    seat_numbers: Mapped[list] = mapped_column(JSON, nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="INR")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("confirmation_code", name="uq_booking_confirmation_code"),
        UniqueConstraint("hold_id", name="uq_booking_hold_id"),
        UniqueConstraint("payment_id", name="uq_booking_payment_id"),
    )
