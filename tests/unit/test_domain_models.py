from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from src.domain.models import (
    BookingRecord,
    Hold,
    PassengerManifestEntry,
    PaymentAttempt,
    PaymentStatus,
    ResourceUnit,
    SearchCriteria,
    UnitStatus,
    UserContext,
    WorkflowSnapshot,
    WorkflowState,
)
from src.domain.state_machine import WorkflowStage

NOW = datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)


def _hold(**overrides) -> Hold:
    values = dict(
        hold_id="hold_1",
        inventory_item_id="bus_1",
        unit_ids=("S3", "S4"),
        expires_at=NOW + timedelta(minutes=10),
        amount_paise=100000,
        currency="INR",
    )
    values.update(overrides)
    return Hold(**values)


def _attempt(status=PaymentStatus.SUCCEEDED, hold_id="hold_1") -> PaymentAttempt:
    return PaymentAttempt(
        attempt_id="att_1",
        hold_id=hold_id,
        order_id="ord_1",
        gateway_order_id="order_gw_1",
        amount_paise=100000,
        currency="INR",
        status=status,
        payment_id="pay_1" if status == PaymentStatus.SUCCEEDED else None,
        signature="sig" if status == PaymentStatus.SUCCEEDED else None,
        created_at=NOW,
    )


def test_hold_expiry_is_inclusive():
    hold = _hold()

    assert not hold.is_expired(NOW)
    assert hold.is_expired(hold.expires_at)


def test_domain_values_are_frozen():
    hold = _hold()

    with pytest.raises(ValidationError):
        hold.amount_paise = 1


def test_manifest_entry_takes_contact_from_user():
    user = UserContext(user_id="u1", name="Asha", email="asha@example.com", phone="9999")
    entry = PassengerManifestEntry(name="Ravi", age=30, gender="male", phone="1234")

    filled = entry.with_contact(user)

    assert filled.email == "asha@example.com"
    assert filled.phone == "1234"


def test_confirmable_attempt_requires_success_on_current_hold():
    hold = _hold()

    assert WorkflowState(hold=hold, attempts=(_attempt(),)).confirmable_attempt is not None
    assert (
        WorkflowState(hold=hold, attempts=(_attempt(PaymentStatus.DISMISSED),)).confirmable_attempt
        is None
    )
    assert (
        WorkflowState(hold=hold, attempts=(_attempt(hold_id="other"),)).confirmable_attempt
        is None
    )


def test_confirmable_attempt_clears_once_booked():
    record = BookingRecord(
        confirmation_code="WS1234",
        hold_id="hold_1",
        payment_id="pay_1",
        gateway_order_id="order_gw_1",
        unit_ids=("S3", "S4"),
        amount_paise=100000,
        currency="INR",
        confirmed_at=NOW,
    )

    state = WorkflowState(hold=_hold(), attempts=(_attempt(),), booking=record)

    assert state.confirmable_attempt is None


def test_selection_total_without_hold():
    layout = (
        ResourceUnit(unit_id="S1", category="seater", price_paise=50000),
        ResourceUnit(
            unit_id="S2", category="seater", price_paise=50000, status=UnitStatus.SELECTED_BY_ME
        ),
        ResourceUnit(
            unit_id="U1", category="sleeper", price_paise=80000, status=UnitStatus.SELECTED_BY_ME
        ),
    )

    state = WorkflowState(stage=WorkflowStage.SEAT_SELECTION, layout=layout)

    assert state.selected_unit_ids == ("S2", "U1")
    assert state.total_amount_paise == 130000


def test_snapshot_projects_hold_and_abandoned_hold():
    hold = _hold()
    abandoned = _hold(hold_id="hold_0", expires_at=NOW + timedelta(minutes=3))
    state = WorkflowState(stage=WorkflowStage.PAYMENT, hold=hold, abandoned_hold=abandoned)

    snapshot = WorkflowSnapshot.from_state(state, "INR")

    assert snapshot.stage == WorkflowStage.PAYMENT
    assert snapshot.progress == 3
    assert snapshot.selected_unit_ids == ("S3", "S4")
    assert snapshot.total_amount_paise == 100000
    assert snapshot.hold_id == "hold_1"
    assert snapshot.seats_held_until == abandoned.expires_at


def test_payment_status_terminality():
    assert PaymentStatus.SUCCEEDED.is_terminal
    assert PaymentStatus.DISMISSED.is_terminal
    assert not PaymentStatus.AWAITING_USER.is_terminal


def test_search_criteria_defaults_to_one_passenger():
    criteria = SearchCriteria(origin="A", destination="B", travel_date=date(2030, 1, 2))

    assert criteria.passengers == 1
