import asyncio

import httpx
import pytest
from sqlalchemy import select

from src.application.booking_workflow import BookingWorkflow
from src.config import Settings
from src.domain.exceptions import ConfirmationAmbiguous, PaymentNotCompleted, UnitsUnavailable
from src.domain.models import ErrorKind, PassengerManifestEntry, Recovery, SearchCriteria, UnitStatus, UserContext
from src.domain.state_machine import WorkflowStage
from src.infrastructure.db.models import Booking

USER = UserContext(user_id="user1", name="Asha", email="asha@example.com", phone="9999999999")
MANIFEST = [
    PassengerManifestEntry(name="Asha", age=31, gender="female"),
    PassengerManifestEntry(name="Ravi", age=34, gender="male"),
]
S_SEATS = tuple((f"S{n}", "seater", "lower", 50000) for n in range(1, 7))


class ScriptedLauncher:
    """Plays one script per checkout opened, like a user at the gateway."""

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.requests = []

    def open(self, request):
        self.requests.append(request)
        self.scripts.pop(0)(request)

    def close(self):
        pass


def _pay_with(signer, payment_id):
    def script(request):
        request.on_success(payment_id, request.order_id, signer(request.order_id, payment_id))

    return script


def _dismiss(request):
    request.on_dismiss()


def _workflow(api_app, clock, launcher) -> BookingWorkflow:
    settings = Settings(api_base_url="http://testserver", confirm_retry_delay=0)
    return BookingWorkflow.from_settings(
        settings,
        USER,
        launcher,
        clock=clock,
        transport=httpx.ASGITransport(app=api_app),
    )


@pytest.fixture
def two_buses(trip_factory):
    first = trip_factory(operator_name="Early Bus", departure_hour=8, seats=S_SEATS)
    second = trip_factory(operator_name="Night Bus", departure_hour=21, seats=S_SEATS)
    return first, second


def test_booking_flow(api_app, clock, two_buses, signer, travel_date, session_factory):
    launcher = ScriptedLauncher(_dismiss, _pay_with(signer, "pay_live_1"))
    workflow = _workflow(api_app, clock, launcher)

    async def run():
        try:
            state = await workflow.search(
                SearchCriteria(origin="Delhi", destination="Manali", travel_date=travel_date, passengers=2)
            )
            assert [item.item_id for item in state.results] == list(two_buses)

            await workflow.select_item(state.results[1].item_id)
            state = await workflow.select_seats(["S3", "S4"], MANIFEST)
            assert state.stage == WorkflowStage.PAYMENT
            assert state.hold.unit_ids == ("S3", "S4")
            assert state.hold.amount_paise == 100000

            with pytest.raises(PaymentNotCompleted):
                await workflow.pay()
            assert workflow.state.stage == WorkflowStage.PAYMENT
            assert workflow.state.hold == state.hold

            return await workflow.pay()
        finally:
            await workflow.aclose()

    state = asyncio.run(run())

    assert state.stage == WorkflowStage.CONFIRMATION
    assert state.booking.confirmation_code
    assert state.booking.payment_id == "pay_live_1"
    assert state.booking.unit_ids == ("S3", "S4")
    assert launcher.requests[1].key_id == "rzp_test_key"

    with session_factory() as db:
        bookings = list(db.execute(select(Booking)).scalars())
    assert len(bookings) == 1
    assert bookings[0].hold_id == state.hold.hold_id
    assert bookings[0].trip_id == two_buses[1]


def test_seat_taken_by_another_buyer(api_app, clock, two_buses, travel_date):
    workflow = _workflow(api_app, clock, ScriptedLauncher())
    bus = two_buses[1]

    async def run():
        try:
            await workflow.search(
                SearchCriteria(origin="Delhi", destination="Manali", travel_date=travel_date)
            )
            await workflow.select_item(bus)

            # Someone else grabs S3 after our layout was fetched.
            async with httpx.AsyncClient(
                transport=httpx.ASGITransport(app=api_app), base_url="http://testserver"
            ) as other_buyer:
                other = await other_buyer.post(
                    "/bus/block",
                    json={
                        "inventoryItemId": bus,
                        "unitIds": ["S3"],
                        "manifest": [{"name": "Other", "age": 40, "gender": "male"}],
                        "idempotencyKey": "other-buyer",
                    },
                )
            assert other.status_code == 200

            with pytest.raises(UnitsUnavailable):
                await workflow.select_seats(["S3", "S4"], MANIFEST)
            return workflow.state
        finally:
            await workflow.aclose()

    state = asyncio.run(run())

    assert state.stage == WorkflowStage.SEAT_SELECTION
    assert state.error.unit_ids == ("S3",)
    statuses = {unit.unit_id: unit.status for unit in state.layout}
    assert statuses["S3"] == UnitStatus.HELD_BY_OTHER
    assert statuses["S4"] == UnitStatus.AVAILABLE


def test_payment_completed_after_hold_expiry(api_app, clock, two_buses, signer, travel_date):
    pay = _pay_with(signer, "pay_late_1")

    def pay_late(request):
        clock.advance(650)
        pay(request)

    workflow = _workflow(api_app, clock, ScriptedLauncher(pay_late))

    async def run():
        try:
            state = await workflow.search(
                SearchCriteria(origin="Delhi", destination="Manali", travel_date=travel_date)
            )
            await workflow.select_item(state.results[0].item_id)
            await workflow.select_seats(["S1", "S2"], MANIFEST)
            with pytest.raises(ConfirmationAmbiguous) as exc_info:
                await workflow.pay()
            return exc_info.value
        finally:
            await workflow.aclose()

    error = asyncio.run(run())

    assert error.payment_id == "pay_late_1"
    assert not error.retryable
    state = workflow.state
    assert state.stage == WorkflowStage.FAILED
    assert state.failure.kind == ErrorKind.CONFIRMATION_AMBIGUOUS
    assert state.failure.recovery == Recovery.CONTACT_SUPPORT
    assert state.failure.funds_may_be_captured
