import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from src.application.payment_orchestrator import PaymentOrchestrator
from src.domain.exceptions import (
    CallerError,
    HoldExpired,
    PaymentInFlight,
    PaymentNotCompleted,
)
from src.domain.models import Hold, PaymentStatus, UserContext
from src.infrastructure.http.api_client import BookingApiClient

NOW = datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)
USER = UserContext(user_id="u1", name="Asha", email="asha@example.com", phone="9999999999")


class ScriptedLauncher:
    """Stands in for the gateway SDK; `script` decides which callback fires."""

    def __init__(self, script=None):
        self.script = script
        self.requests = []
        self.closed = 0

    def open(self, request):
        self.requests.append(request)
        if self.script is not None:
            self.script(request)

    def close(self):
        self.closed += 1


def _hold(expires_in=timedelta(minutes=10)) -> Hold:
    return Hold(
        hold_id="hold_1",
        inventory_item_id="bus_1",
        unit_ids=("S3", "S4"),
        expires_at=NOW + expires_in,
        amount_paise=100000,
        currency="INR",
    )


def _order_api(calls, response=None) -> BookingApiClient:
    def handler(request):
        calls.append(json.loads(request.content))
        if response is not None:
            return response
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {
                    "orderId": "ord_1",
                    "gatewayOrderId": "order_gw_1",
                    "amount": 100000,
                    "currency": "INR",
                    "keyId": "rzp_test_key",
                },
            },
        )

    return BookingApiClient("http://booking.test", transport=httpx.MockTransport(handler))


def _orchestrator(calls, launcher, response=None, grace_seconds=120.0) -> PaymentOrchestrator:
    return PaymentOrchestrator(
        _order_api(calls, response),
        launcher,
        USER,
        clock=lambda: NOW,
        grace_seconds=grace_seconds,
    )


def test_success_callback_for_issued_order_succeeds():
    calls = []
    launcher = ScriptedLauncher(lambda r: r.on_success("pay_1", r.order_id, "sig_1"))

    attempt = asyncio.run(_orchestrator(calls, launcher).authorize(_hold(), 100000, "INR"))

    assert attempt.status == PaymentStatus.SUCCEEDED
    assert attempt.payment_id == "pay_1"
    assert attempt.signature == "sig_1"
    assert attempt.gateway_order_id == "order_gw_1"
    assert calls == [{"holdId": "hold_1", "amount": 100000, "currency": "INR"}]

    request = launcher.requests[0]
    assert request.key_id == "rzp_test_key"
    assert request.order_id == "order_gw_1"
    assert request.prefill.email == "asha@example.com"


def test_dismissal_is_not_a_success():
    launcher = ScriptedLauncher(lambda r: r.on_dismiss())

    attempt = asyncio.run(_orchestrator([], launcher).authorize(_hold(), 100000, "INR"))

    assert attempt.status == PaymentStatus.DISMISSED
    assert attempt.payment_id is None


def test_gateway_failure_is_reported():
    launcher = ScriptedLauncher(lambda r: r.on_failure("card declined"))

    attempt = asyncio.run(_orchestrator([], launcher).authorize(_hold(), 100000, "INR"))

    assert attempt.status == PaymentStatus.GATEWAY_ERROR
    assert attempt.failure_reason == "card declined"


def test_first_callback_wins_and_late_ones_are_ignored():
    def script(request):
        request.on_dismiss()
        request.on_success("pay_1", request.order_id, "sig_1")

    attempt = asyncio.run(
        _orchestrator([], ScriptedLauncher(script)).authorize(_hold(), 100000, "INR")
    )

    assert attempt.status == PaymentStatus.DISMISSED


def test_success_for_another_order_is_discarded():
    launcher = ScriptedLauncher(lambda r: r.on_success("pay_1", "order_other", "sig_1"))

    attempt = asyncio.run(_orchestrator([], launcher).authorize(_hold(), 100000, "INR"))

    assert attempt.status == PaymentStatus.GATEWAY_ERROR
    assert attempt.payment_id is None


def test_checkout_wait_ends_after_hold_expiry_and_grace():
    launcher = ScriptedLauncher()
    orchestrator = _orchestrator([], launcher, grace_seconds=0.05)

    attempt = asyncio.run(
        orchestrator.authorize(_hold(expires_in=timedelta(milliseconds=1)), 100000, "INR")
    )

    assert attempt.status == PaymentStatus.GATEWAY_ERROR
    assert attempt.failure_reason == "hold_expired"
    assert launcher.closed == 1


def test_expired_hold_is_refused_without_creating_an_order():
    calls = []

    with pytest.raises(HoldExpired):
        asyncio.run(
            _orchestrator(calls, ScriptedLauncher()).authorize(
                _hold(expires_in=timedelta(seconds=-1)), 100000, "INR"
            )
        )

    assert calls == []


def test_partial_amount_is_refused():
    with pytest.raises(CallerError):
        asyncio.run(_orchestrator([], ScriptedLauncher()).authorize(_hold(), 50000, "INR"))


def test_order_rejected_for_expired_hold_raises_hold_expired():
    response = httpx.Response(
        410, json={"success": False, "code": "HOLD_EXPIRED", "message": "Hold has expired"}
    )

    with pytest.raises(HoldExpired):
        asyncio.run(
            _orchestrator([], ScriptedLauncher(), response=response).authorize(
                _hold(), 100000, "INR"
            )
        )


def test_order_for_wrong_amount_is_not_offered_to_the_user():
    response = httpx.Response(
        200,
        json={
            "success": True,
            "data": {
                "orderId": "ord_1",
                "gatewayOrderId": "order_gw_1",
                "amount": 1,
                "currency": "INR",
                "keyId": "rzp_test_key",
            },
        },
    )
    launcher = ScriptedLauncher()

    with pytest.raises(PaymentNotCompleted):
        asyncio.run(_orchestrator([], launcher, response=response).authorize(_hold(), 100000, "INR"))

    assert launcher.requests == []


def test_second_attempt_for_same_hold_is_refused_while_first_is_open():
    def script(request):
        asyncio.get_running_loop().call_later(0.01, request.on_dismiss)

    orchestrator = _orchestrator([], ScriptedLauncher(script))

    async def run():
        return await asyncio.gather(
            orchestrator.authorize(_hold(), 100000, "INR"),
            orchestrator.authorize(_hold(), 100000, "INR"),
            return_exceptions=True,
        )

    first, second = asyncio.run(run())

    assert first.status == PaymentStatus.DISMISSED
    assert isinstance(second, PaymentInFlight)
    assert not orchestrator.has_attempt_in_flight("hold_1")
