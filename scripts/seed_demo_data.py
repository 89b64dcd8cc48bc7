from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select

from src.infrastructure.db.models import Base, Seat, SeatStatus, Trip
from src.infrastructure.db.session import engine, get_db_session


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    ist = timezone(timedelta(hours=5, minutes=30))
    now_ist = datetime.now(ist)
    target = now_ist + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0).astimezone(
        timezone.utc
    )


def _seat_plan(base_fare_paise: int) -> list[dict]:
    # Lower deck seaters (first row reserved for ladies), upper deck sleepers.
    seats = []
    for number in range(1, 13):
        seats.append(
            {
                "seat_number": f"L{number}",
                "category": "ladies" if number <= 2 else "seater",
                "deck": "lower",
                "price_paise": base_fare_paise,
            }
        )
    for number in range(1, 9):
        seats.append(
            {
                "seat_number": f"U{number}",
                "category": "sleeper",
                "deck": "upper",
                "price_paise": base_fare_paise + 30000,
            }
        )
    return seats


def seed_trips(db) -> None:
    trip_defs = [
        {
            "operator_name": "Zingbus Premium",
            "bus_type": "AC Sleeper (2+1)",
            "origin": "Delhi",
            "destination": "Manali",
            "departure_time": _dt(days_from_now=3, hour=19, minute=30),
            "arrival_time": _dt(days_from_now=4, hour=9, minute=0),
            "base_fare_paise": 120000,
            "rating": 4.4,
        },
        {
            "operator_name": "IntrCity SmartBus",
            "bus_type": "AC Seater / Sleeper",
            "origin": "Delhi",
            "destination": "Jaipur",
            "departure_time": _dt(days_from_now=2, hour=22, minute=15),
            "arrival_time": _dt(days_from_now=3, hour=4, minute=45),
            "base_fare_paise": 75000,
            "rating": 4.1,
        },
        {
            "operator_name": "VRL Travels",
            "bus_type": "Volvo Multi-Axle",
            "origin": "Bangalore",
            "destination": "Goa",
            "departure_time": _dt(days_from_now=5, hour=20, minute=0),
            "arrival_time": _dt(days_from_now=6, hour=8, minute=30),
            "base_fare_paise": 140000,
            "rating": 4.6,
        },
    ]

    for item in trip_defs:
        existing = db.execute(
            select(Trip)
            .where(Trip.operator_name == item["operator_name"])
            .where(Trip.origin == item["origin"])
            .where(Trip.destination == item["destination"])
        ).scalar_one_or_none()
        if existing:
            db.execute(delete(Seat).where(Seat.trip_id == existing.id))
            trip = existing
            for key, value in item.items():
                setattr(trip, key, value)
        else:
            trip = Trip(**item)
            db.add(trip)
            db.flush()

        for seat in _seat_plan(item["base_fare_paise"]):
            db.add(Seat(trip_id=trip.id, status=SeatStatus.AVAILABLE, **seat))


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        seed_trips(db)
    print("Seed complete: Delhi-Manali, Delhi-Jaipur, Bangalore-Goa trips added.")


if __name__ == "__main__":
    main()
