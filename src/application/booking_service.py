import logging
from datetime import timedelta
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.api.schemas.schemas import ConfirmRequest, HoldRequest, OrderRequest, SearchRequest
from src.domain.clock import Clock, as_utc, utc_now
from src.domain.exceptions import BookingRequestError
from src.infrastructure.db.models import (
    Booking,
    HoldStatus,
    OrderStatus,
    PaymentOrder,
    Seat,
    SeatHold,
    SeatStatus,
    Trip,
)
from src.infrastructure.payments.razorpay_gateway import GATEWAY_ERRORS, RazorpayGateway
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.seat_repository import SeatRepository

logger = logging.getLogger(__name__)

GENDERS = {"male", "female", "other"}


class BookingService:
    """Application service behind the booking API: search, hold, order, book."""

    def __init__(
        self,
        db: Session,
        clock: Clock = utc_now,
        hold_ttl_seconds: int = 600,
        max_seats: int = 6,
        currency: str = "INR",
    ):
        self.db = db
        self.clock = clock
        self.hold_ttl_seconds = hold_ttl_seconds
        self.max_seats = max_seats
        self.currency = currency
        self.booking_repository = BookingRepository(db)
        self.seat_repository = SeatRepository(db)

    # -----------------------------
    # Reads
    # -----------------------------
    def search(self, request: SearchRequest) -> list[tuple[Trip, int]]:
        if request.origin.strip().lower() == request.destination.strip().lower():
            raise BookingRequestError("INVALID_ROUTE", "Origin and destination must differ")

        trips = self.seat_repository.search_trips(
            request.origin, request.destination, request.travel_date
        )
        now = self.clock()
        results = []
        for trip in trips:
            self.seat_repository.release_expired_holds(trip.id, now)
            available = self.seat_repository.count_available(trip.id)
            if available >= request.passengers:
                results.append((trip, available))
        return results

    def seat_layout(self, trip_id: str) -> list[Seat]:
        self._get_trip(trip_id)
        self.seat_repository.release_expired_holds(trip_id, self.clock())
        return self.seat_repository.list_seats(trip_id)

    # -----------------------------
    # Hold
    # -----------------------------
    def place_hold(self, request: HoldRequest) -> SeatHold:
        existing = self.booking_repository.get_hold_by_idempotency_key(request.idempotency_key)
        if existing:
            if (
                existing.trip_id != request.inventory_item_id
                or list(existing.seat_numbers) != list(request.unit_ids)
            ):
                raise BookingRequestError(
                    "IDEMPOTENCY_CONFLICT",
                    "Idempotency key was used for a different selection",
                    status_code=409,
                )
            logger.info("Replaying hold %s for key %s", existing.id, request.idempotency_key)
            return existing

        self._get_trip(request.inventory_item_id)
        self._validate_hold_request(request)

        now = self.clock()
        self.seat_repository.release_expired_holds(request.inventory_item_id, now)
        seats = self.seat_repository.lock_seats(request.inventory_item_id, request.unit_ids)

        found = {seat.seat_number for seat in seats}
        unknown = [unit for unit in request.unit_ids if unit not in found]
        if unknown:
            raise BookingRequestError(
                "HOLD_REJECTED",
                f"Unknown seats: {', '.join(unknown)}",
                data={"unitIds": unknown},
            )

        taken = [seat.seat_number for seat in seats if seat.status != SeatStatus.AVAILABLE]
        if taken:
            raise BookingRequestError(
                "UNITS_UNAVAILABLE",
                "Some seats are no longer available",
                status_code=409,
                data={"unitIds": sorted(taken)},
            )

        hold = SeatHold(
            trip_id=request.inventory_item_id,
            seat_numbers=list(request.unit_ids),
            manifest=[passenger.model_dump() for passenger in request.manifest],
            user_id=request.user_id,
            idempotency_key=request.idempotency_key,
            amount_paise=sum(seat.price_paise for seat in seats),
            currency=self.currency,
            status=HoldStatus.ACTIVE,
            expires_at=now + timedelta(seconds=self.hold_ttl_seconds),
        )
        try:
            self.booking_repository.add_hold(hold)
        except IntegrityError as exc:
            raise BookingRequestError(
                "IDEMPOTENCY_CONFLICT",
                "Concurrent hold request with the same key",
                status_code=409,
            ) from exc

        self.seat_repository.hold_seats(seats, hold)
        logger.info(
            "Hold %s placed on %s for seats %s until %s",
            hold.id,
            hold.trip_id,
            hold.seat_numbers,
            hold.expires_at,
        )
        return hold

    def _validate_hold_request(self, request: HoldRequest) -> None:
        units = request.unit_ids
        if not units:
            raise BookingRequestError("HOLD_REJECTED", "Select at least one seat")
        if len(units) > self.max_seats:
            raise BookingRequestError(
                "HOLD_REJECTED", f"At most {self.max_seats} seats per booking"
            )
        if len(set(units)) != len(units):
            raise BookingRequestError("HOLD_REJECTED", "Duplicate seats in request")
        if len(request.manifest) != len(units):
            raise BookingRequestError(
                "HOLD_REJECTED", "Passenger details are required for every seat"
            )
        for passenger in request.manifest:
            if not passenger.name.strip():
                raise BookingRequestError("HOLD_REJECTED", "Passenger name is required")
            if not 1 <= passenger.age <= 120:
                raise BookingRequestError("HOLD_REJECTED", "Passenger age is out of range")
            if passenger.gender.lower() not in GENDERS:
                raise BookingRequestError("HOLD_REJECTED", "Passenger gender is invalid")

    # -----------------------------
    # Payment order
    # -----------------------------
    def create_order(self, request: OrderRequest, gateway: RazorpayGateway) -> PaymentOrder:
        hold = self._get_hold(request.hold_id)
        if hold.status == HoldStatus.CONSUMED:
            raise BookingRequestError("HOLD_CONSUMED", "Hold is already booked", status_code=409)
        self._ensure_hold_live(hold)

        if request.amount != hold.amount_paise or request.currency != hold.currency:
            raise BookingRequestError(
                "AMOUNT_MISMATCH",
                f"Order must be for {hold.amount_paise} {hold.currency}",
            )

        try:
            gateway_order_id = gateway.create_order(
                amount=hold.amount_paise,
                currency=hold.currency,
                receipt=hold.id,
                notes={"holdId": hold.id, "tripId": hold.trip_id},
            )
        except GATEWAY_ERRORS as exc:
            logger.exception("Order creation failed for hold %s", hold.id)
            raise BookingRequestError(
                "GATEWAY_UNAVAILABLE", "Payment gateway is unavailable", status_code=502
            ) from exc

        order = PaymentOrder(
            hold_id=hold.id,
            gateway_order_id=gateway_order_id,
            amount_paise=hold.amount_paise,
            currency=hold.currency,
            status=OrderStatus.CREATED,
        )
        return self.booking_repository.add_order(order)

    # -----------------------------
    # Confirmation
    # -----------------------------
    def confirm_booking(self, request: ConfirmRequest, gateway: RazorpayGateway) -> Booking:
        """
        Idempotent on (hold_id, payment_id): a replay of a confirmed pair
        returns the existing booking rather than booking twice.
        """

        hold = self._get_hold(request.hold_id)

        existing = self.booking_repository.get_booking_by_hold(hold.id)
        if existing:
            if existing.payment_id == request.payment_id:
                logger.info("Replaying booking %s for hold %s", existing.confirmation_code, hold.id)
                return existing
            raise BookingRequestError(
                "HOLD_CONSUMED", "Hold is already booked with another payment", status_code=409
            )

        if self.booking_repository.get_booking_by_payment(request.payment_id):
            raise BookingRequestError(
                "PAYMENT_CONSUMED", "Payment already used for another booking", status_code=409
            )

        order = self.booking_repository.get_order_by_gateway_id(request.gateway_order_id)
        if order is None or order.hold_id != hold.id:
            raise BookingRequestError(
                "ORDER_MISMATCH", "Order was not issued for this hold", status_code=409
            )
        if request.amount != order.amount_paise or request.currency != order.currency:
            raise BookingRequestError("AMOUNT_MISMATCH", "Amount does not match the order")

        if not gateway.verify_signature(order.gateway_order_id, request.payment_id, request.signature):
            raise BookingRequestError("INVALID_SIGNATURE", "Payment signature is invalid")

        if hold.status != HoldStatus.ACTIVE or as_utc(hold.expires_at) <= self.clock():
            logger.warning(
                "Payment %s captured against expired hold %s; refund required",
                request.payment_id,
                hold.id,
            )
            raise BookingRequestError("HOLD_EXPIRED", "Hold has expired", status_code=410)

        booking = Booking(
            confirmation_code=_confirmation_code(),
            hold_id=hold.id,
            payment_id=request.payment_id,
            gateway_order_id=order.gateway_order_id,
            payment_signature=request.signature,
            trip_id=hold.trip_id,
            seat_numbers=list(hold.seat_numbers),
            user_id=hold.user_id,
            amount_paise=order.amount_paise,
            currency=order.currency,
            created_at=self.clock(),
        )
        try:
            self.booking_repository.add_booking(booking)
        except IntegrityError as exc:
            raise BookingRequestError(
                "CONFIRMATION_CONFLICT", "Concurrent confirmation in progress", status_code=409
            ) from exc

        self.seat_repository.book_seats(hold)
        hold.status = HoldStatus.CONSUMED
        order.status = OrderStatus.PAID
        self.db.flush()

        logger.info(
            "Booking %s confirmed for hold %s payment %s",
            booking.confirmation_code,
            hold.id,
            request.payment_id,
        )
        return booking

    # -----------------------------
    # Helpers
    # -----------------------------
    def _get_trip(self, trip_id: str) -> Trip:
        trip = self.seat_repository.get_trip(trip_id)
        if not trip:
            raise BookingRequestError("ITEM_NOT_FOUND", "Bus not found", status_code=404)
        return trip

    def _get_hold(self, hold_id: str) -> SeatHold:
        hold = self.booking_repository.get_hold(hold_id, for_update=True)
        if not hold:
            raise BookingRequestError("HOLD_NOT_FOUND", "Hold not found", status_code=404)
        return hold

    def _ensure_hold_live(self, hold: SeatHold) -> None:
        if hold.status == HoldStatus.EXPIRED or as_utc(hold.expires_at) <= self.clock():
            raise BookingRequestError("HOLD_EXPIRED", "Hold has expired", status_code=410)


def _confirmation_code() -> str:
    return "WS" + uuid4().hex[:8].upper()
