# src/infrastructure/repositories/seat_repository.py

from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from src.infrastructure.db.models import HoldStatus, Seat, SeatHold, SeatStatus, Trip


class SeatRepository:

    def __init__(self, db: Session):
        self.db = db

    def search_trips(
        self,
        origin: str,
        destination: str,
        travel_date: date,
    ) -> list[Trip]:
        day_start = datetime.combine(travel_date, time.min, tzinfo=timezone.utc)
        day_end = day_start + timedelta(days=1)

        stmt = (
            select(Trip)
            .where(func.lower(Trip.origin) == origin.strip().lower())
            .where(func.lower(Trip.destination) == destination.strip().lower())
            .where(Trip.departure_time >= day_start)
            .where(Trip.departure_time < day_end)
            .order_by(Trip.departure_time)
        )
        return list(self.db.execute(stmt).scalars())

    def get_trip(self, trip_id: str) -> Trip | None:
        stmt = select(Trip).where(Trip.id == trip_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_seats(self, trip_id: str) -> list[Seat]:
        stmt = select(Seat).where(Seat.trip_id == trip_id).order_by(Seat.seat_number)
        return list(self.db.execute(stmt).scalars())

    def count_available(self, trip_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(Seat)
            .where(Seat.trip_id == trip_id)
            .where(Seat.status == SeatStatus.AVAILABLE)
        )
        return self.db.execute(stmt).scalar_one()

    def lock_seats(self, trip_id: str, seat_numbers: list[str]) -> list[Seat]:
        """
        SELECT ... FOR UPDATE
        Two buyers racing for one seat serialize here.
        """

        stmt = (
            select(Seat)
            .where(Seat.trip_id == trip_id)
            .where(Seat.seat_number.in_(seat_numbers))
            .with_for_update()
        )
        return list(self.db.execute(stmt).scalars())

    def release_expired_holds(self, trip_id: str, now: datetime) -> int:
        """Expire lapsed holds on a trip and return their seats to sale."""

        stmt = (
            select(SeatHold)
            .where(SeatHold.trip_id == trip_id)
            .where(SeatHold.status == HoldStatus.ACTIVE)
            .where(SeatHold.expires_at <= now)
            .with_for_update()
        )
        expired = list(self.db.execute(stmt).scalars())

        for hold in expired:
            hold.status = HoldStatus.EXPIRED
            seats = self.db.execute(
                select(Seat).where(Seat.hold_id == hold.id).with_for_update()
            ).scalars()
            for seat in seats:
                if seat.status == SeatStatus.HELD:
                    seat.status = SeatStatus.AVAILABLE
                    seat.hold_id = None

        if expired:
            self.db.flush()
        return len(expired)

    def hold_seats(self, seats: list[Seat], hold: SeatHold) -> None:
        for seat in seats:
            seat.status = SeatStatus.HELD
            seat.hold_id = hold.id

    def book_seats(self, hold: SeatHold) -> None:
        seats = self.db.execute(
            select(Seat).where(Seat.hold_id == hold.id).with_for_update()
        ).scalars()
        for seat in seats:
            seat.status = SeatStatus.BOOKED
