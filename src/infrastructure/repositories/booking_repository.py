# src/infrastructure/repositories/booking_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import Booking, PaymentOrder, SeatHold


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    # -----------------------------
    # Holds
    # -----------------------------
    def get_hold(self, hold_id: str, for_update: bool = False) -> SeatHold | None:
        stmt = select(SeatHold).where(SeatHold.id == hold_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_hold_by_idempotency_key(
        self,
        idempotency_key: str,
    ) -> SeatHold | None:

        stmt = select(SeatHold).where(
            SeatHold.idempotency_key == idempotency_key
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def add_hold(self, hold: SeatHold) -> SeatHold:
        self.db.add(hold)
        self.db.flush()
        return hold

    # -----------------------------
    # Payment orders
    # -----------------------------
    def get_order_by_gateway_id(self, gateway_order_id: str) -> PaymentOrder | None:
        stmt = select(PaymentOrder).where(
            PaymentOrder.gateway_order_id == gateway_order_id
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def add_order(self, order: PaymentOrder) -> PaymentOrder:
        self.db.add(order)
        self.db.flush()
        return order

    # -----------------------------
    # Bookings
    # -----------------------------
    def get_booking_by_hold(self, hold_id: str) -> Booking | None:
        stmt = select(Booking).where(Booking.hold_id == hold_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_booking_by_payment(self, payment_id: str) -> Booking | None:
        stmt = select(Booking).where(Booking.payment_id == payment_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def add_booking(self, booking: Booking) -> Booking:
        self.db.add(booking)
        self.db.flush()
        return booking
