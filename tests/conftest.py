import hashlib
import hmac
import os
from datetime import datetime, time, timedelta, timezone

# The application engine is built at import time; keep it off Postgres.
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.api.routes.routes import get_clock, get_db, get_payment_gateway, get_settings
from src.config import Settings
from src.infrastructure.db.models import Base, Seat, SeatStatus, Trip
from src.infrastructure.payments.razorpay_gateway import RazorpayGateway
from src.main import app

KEY_ID = "rzp_test_key"
KEY_SECRET = "rzp_test_secret"


class MutableClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class StubOrderGateway(RazorpayGateway):
    """Real signature verification; order creation never leaves the process."""

    def __init__(self):
        super().__init__(KEY_ID, KEY_SECRET)
        self.created_orders = []

    def create_order(self, amount, currency, receipt, notes):
        order_id = f"order_test_{len(self.created_orders) + 1}"
        self.created_orders.append(
            {"id": order_id, "amount": amount, "currency": currency, "receipt": receipt}
        )
        return order_id


def sign(gateway_order_id: str, payment_id: str) -> str:
    message = f"{gateway_order_id}|{payment_id}".encode()
    return hmac.new(KEY_SECRET.encode(), message, hashlib.sha256).hexdigest()


@pytest.fixture
def clock():
    return MutableClock(datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def gateway():
    return StubOrderGateway()


@pytest.fixture
def api_settings():
    return Settings(hold_ttl_seconds=600, max_seats_per_booking=6)


@pytest.fixture
def api_app(session_factory, gateway, clock, api_settings):
    def override_get_db():
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_settings] = lambda: api_settings
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(api_app):
    # Not used as a context manager: startup would wait for a real database.
    return TestClient(api_app)


def add_trip(
    session_factory,
    clock,
    origin="Delhi",
    destination="Manali",
    operator_name="Zingbus Premium",
    departure_hour=19,
    seats=(("L1", "seater", "lower", 50000),
           ("L2", "seater", "lower", 50000),
           ("L3", "seater", "lower", 50000),
           ("L4", "seater", "lower", 50000),
           ("U1", "sleeper", "upper", 80000),
           ("U2", "sleeper", "upper", 80000)),
) -> str:
    travel_day = clock().date() + timedelta(days=1)
    departure = datetime.combine(travel_day, time(departure_hour, 0), tzinfo=timezone.utc)

    with session_factory() as db:
        trip = Trip(
            operator_name=operator_name,
            bus_type="AC Sleeper (2+1)",
            origin=origin,
            destination=destination,
            departure_time=departure,
            arrival_time=departure + timedelta(hours=12),
            base_fare_paise=50000,
            rating=4.3,
        )
        db.add(trip)
        db.flush()
        for seat_number, category, deck, price in seats:
            db.add(
                Seat(
                    trip_id=trip.id,
                    seat_number=seat_number,
                    category=category,
                    deck=deck,
                    price_paise=price,
                    status=SeatStatus.AVAILABLE,
                )
            )
        db.commit()
        return trip.id


@pytest.fixture
def trip_id(session_factory, clock):
    return add_trip(session_factory, clock)


@pytest.fixture
def travel_date(clock):
    return clock().date() + timedelta(days=1)


@pytest.fixture
def signer():
    return sign


@pytest.fixture
def trip_factory(session_factory, clock):
    def factory(**kwargs):
        return add_trip(session_factory, clock, **kwargs)

    return factory
