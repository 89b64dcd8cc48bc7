import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from src.api.schemas.schemas import (
    ApiResponse,
    BookingOut,
    ConfirmRequest,
    HealthResponse,
    HoldOut,
    HoldRequest,
    InventoryItemOut,
    OrderOut,
    OrderRequest,
    ResourceUnitOut,
    SearchRequest,
    SeatLayoutRequest,
)
from src.application.booking_service import BookingService
from src.config import Settings
from src.domain.clock import Clock, as_utc, utc_now
from src.domain.exceptions import BookingRequestError
from src.infrastructure.db.models import Booking, Seat, SeatHold, SeatStatus, Trip
from src.infrastructure.db.session import SessionLocal
from src.infrastructure.payments.razorpay_gateway import GatewayNotConfigured, RazorpayGateway


router = APIRouter()
logger = logging.getLogger(__name__)

_SEAT_STATUS_TO_WIRE = {
    SeatStatus.AVAILABLE: "available",
    SeatStatus.HELD: "held",
    SeatStatus.BOOKED: "booked",
}


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_settings() -> Settings:
    return Settings.from_env()


def get_clock() -> Clock:
    return utc_now


def get_payment_gateway() -> RazorpayGateway:
    try:
        return RazorpayGateway.from_env()
    except GatewayNotConfigured as exc:
        logger.error("Payment gateway is not configured: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "GATEWAY_UNAVAILABLE", "message": "Payment gateway is not configured"},
        ) from exc


def get_booking_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> BookingService:
    return BookingService(
        db,
        clock=clock,
        hold_ttl_seconds=settings.hold_ttl_seconds,
        max_seats=settings.max_seats_per_booking,
        currency=settings.currency,
    )


def _http_error(exc: BookingRequestError) -> HTTPException:
    detail = {"code": exc.code, "message": exc.message}
    if exc.data is not None:
        detail["data"] = exc.data
    return HTTPException(status_code=exc.status_code, detail=detail)


def _trip_out(trip: Trip, available: int) -> InventoryItemOut:
    return InventoryItemOut(
        id=trip.id,
        operator_name=trip.operator_name,
        bus_type=trip.bus_type,
        departure_time=as_utc(trip.departure_time),
        arrival_time=as_utc(trip.arrival_time) if trip.arrival_time else None,
        layout_ref=trip.id,
        base_fare=trip.base_fare_paise,
        rating=trip.rating,
        available_seats=available,
    )


def _seat_out(seat: Seat) -> ResourceUnitOut:
    return ResourceUnitOut(
        id=seat.seat_number,
        category=seat.category,
        deck=seat.deck,
        price=seat.price_paise,
        status=_SEAT_STATUS_TO_WIRE[seat.status],
    )


def _hold_out(hold: SeatHold) -> HoldOut:
    return HoldOut(
        hold_id=hold.id,
        inventory_item_id=hold.trip_id,
        unit_ids=list(hold.seat_numbers),
        expires_at=as_utc(hold.expires_at),
        amount=hold.amount_paise,
        currency=hold.currency,
    )


def _booking_out(booking: Booking) -> BookingOut:
    return BookingOut(
        confirmation_code=booking.confirmation_code,
        hold_id=booking.hold_id,
        payment_id=booking.payment_id,
        gateway_order_id=booking.gateway_order_id,
        unit_ids=list(booking.seat_numbers),
        amount=booking.amount_paise,
        currency=booking.currency,
        confirmed_at=as_utc(booking.created_at),
    )


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(message="Bus booking API is running")


@router.post("/bus/search", response_model=ApiResponse[list[InventoryItemOut]])
def search_buses(
    request: SearchRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        results = service.search(request)
    except BookingRequestError as exc:
        raise _http_error(exc) from exc

    return ApiResponse(
        data=[_trip_out(trip, available) for trip, available in results],
        message=f"{len(results)} buses found",
    )


@router.post("/bus/seat-layout", response_model=ApiResponse[list[ResourceUnitOut]])
def seat_layout(
    request: SeatLayoutRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        seats = service.seat_layout(request.inventory_item_id)
    except BookingRequestError as exc:
        raise _http_error(exc) from exc

    return ApiResponse(data=[_seat_out(seat) for seat in seats])


@router.post("/bus/block", response_model=ApiResponse[HoldOut])
def block_seats(
    request: HoldRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        hold = service.place_hold(request)
    except BookingRequestError as exc:
        raise _http_error(exc) from exc

    return ApiResponse(data=_hold_out(hold), message="Seats blocked")


@router.post("/payments/orders", response_model=ApiResponse[OrderOut])
def create_payment_order(
    request: OrderRequest,
    service: BookingService = Depends(get_booking_service),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
):
    try:
        order = service.create_order(request, gateway)
    except BookingRequestError as exc:
        raise _http_error(exc) from exc

    return ApiResponse(
        data=OrderOut(
            order_id=order.id,
            gateway_order_id=order.gateway_order_id,
            amount=order.amount_paise,
            currency=order.currency,
            key_id=gateway.key_id,
        )
    )


@router.post("/bus/book", response_model=ApiResponse[BookingOut])
def book_seats(
    request: ConfirmRequest,
    service: BookingService = Depends(get_booking_service),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
):
    try:
        booking = service.confirm_booking(request, gateway)
    except BookingRequestError as exc:
        raise _http_error(exc) from exc

    return ApiResponse(data=_booking_out(booking), message="Booking confirmed")
