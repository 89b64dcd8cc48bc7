import asyncio
import logging
from uuid import uuid4

from pydantic import ValidationError

from src.api.schemas.schemas import OrderOut, OrderRequest
from src.domain.clock import Clock, utc_now
from src.domain.exceptions import (
    CallerError,
    HoldExpired,
    PaymentInFlight,
    PaymentNotCompleted,
)
from src.domain.models import Hold, PaymentAttempt, PaymentStatus, UserContext
from src.infrastructure.http.api_client import BookingApiClient, RemoteRejection
from src.infrastructure.payments.checkout import (
    CheckoutEvent,
    CheckoutLauncher,
    CheckoutPrefill,
    CheckoutRequest,
    PaymentCallbackChannel,
)

logger = logging.getLogger(__name__)


class PaymentOrchestrator:
    """
    Drives one gateway authorization per call:

        created -> awaiting_user -> {succeeded | dismissed | gateway_error}

    An order is created server-side before the checkout opens, and a success
    callback is only accepted when it names that same order. The wait is
    bounded by the hold expiry plus a grace period, so a payment completed
    just after expiry still reaches confirmation (which will reject it
    and surface it for support) instead of being dropped silently.
    """

    def __init__(
        self,
        api: BookingApiClient,
        launcher: CheckoutLauncher,
        user: UserContext,
        clock: Clock = utc_now,
        grace_seconds: float = 120.0,
        description: str = "Bus ticket",
    ):
        self.api = api
        self.launcher = launcher
        self.user = user
        self.clock = clock
        self.grace_seconds = grace_seconds
        self.description = description
        self._in_flight: dict[str, str] = {}

    def has_attempt_in_flight(self, hold_id: str) -> bool:
        return hold_id in self._in_flight

    async def authorize(self, hold: Hold, amount: int, currency: str) -> PaymentAttempt:
        if hold.is_expired(self.clock()):
            raise HoldExpired(hold.hold_id)
        if amount != hold.amount_paise or currency != hold.currency:
            raise CallerError(
                f"Payment must cover the full hold: {hold.amount_paise} {hold.currency}"
            )
        if self.has_attempt_in_flight(hold.hold_id):
            raise PaymentInFlight(hold.hold_id)

        attempt_id = uuid4().hex
        self._in_flight[hold.hold_id] = attempt_id
        try:
            order = await self._create_order(attempt_id, hold, amount, currency)
            attempt = PaymentAttempt(
                attempt_id=attempt_id,
                hold_id=hold.hold_id,
                order_id=order.order_id,
                gateway_order_id=order.gateway_order_id,
                amount_paise=order.amount,
                currency=order.currency,
                status=PaymentStatus.CREATED,
                created_at=self.clock(),
            )
            return await self._await_checkout(hold, order, attempt)
        finally:
            self._in_flight.pop(hold.hold_id, None)

    async def _create_order(
        self,
        attempt_id: str,
        hold: Hold,
        amount: int,
        currency: str,
    ) -> OrderOut:
        payload = OrderRequest(
            hold_id=hold.hold_id,
            amount=amount,
            currency=currency,
        ).model_dump(by_alias=True)

        try:
            data = await self.api.post("/payments/orders", payload)
            order = OrderOut.model_validate(data)
        except RemoteRejection as exc:
            if exc.code == "HOLD_EXPIRED":
                raise HoldExpired(hold.hold_id) from exc
            raise PaymentNotCompleted(
                attempt_id, PaymentStatus.GATEWAY_ERROR.value, exc.message
            ) from exc
        except ValidationError as exc:
            raise PaymentNotCompleted(
                attempt_id, PaymentStatus.GATEWAY_ERROR.value, "Malformed order response"
            ) from exc

        if order.amount != amount or order.currency != currency:
            raise PaymentNotCompleted(
                attempt_id,
                PaymentStatus.GATEWAY_ERROR.value,
                f"Order {order.order_id} does not match the requested amount",
            )

        logger.info(
            "Created order %s (gateway %s) for hold %s",
            order.order_id,
            order.gateway_order_id,
            hold.hold_id,
        )
        return order

    async def _await_checkout(
        self,
        hold: Hold,
        order: OrderOut,
        attempt: PaymentAttempt,
    ) -> PaymentAttempt:
        channel = PaymentCallbackChannel(attempt.attempt_id)
        attempt = attempt.model_copy(update={"status": PaymentStatus.AWAITING_USER})

        request = CheckoutRequest(
            key_id=order.key_id,
            amount=order.amount,
            currency=order.currency,
            order_id=order.gateway_order_id,
            description=self.description,
            prefill=CheckoutPrefill(
                name=self.user.name,
                email=self.user.email,
                contact=self.user.phone,
            ),
            on_success=channel.on_success,
            on_dismiss=channel.on_dismiss,
            on_failure=channel.on_failure,
        )

        remaining = (hold.expires_at - self.clock()).total_seconds()
        timeout = max(remaining, 0.0) + self.grace_seconds

        try:
            try:
                self.launcher.open(request)
            except Exception as exc:
                logger.exception("Gateway checkout failed to open for %s", attempt.attempt_id)
                return self._finish(attempt, PaymentStatus.GATEWAY_ERROR, reason=str(exc))

            try:
                event = await channel.wait(timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Checkout for attempt %s timed out after hold %s expired",
                    attempt.attempt_id,
                    hold.hold_id,
                )
                self.launcher.close()
                return self._finish(attempt, PaymentStatus.GATEWAY_ERROR, reason="hold_expired")
        finally:
            channel.close()

        return self._settle(attempt, event)

    def _settle(self, attempt: PaymentAttempt, event: CheckoutEvent) -> PaymentAttempt:
        if event.kind == "dismiss":
            logger.info("Checkout dismissed for attempt %s", attempt.attempt_id)
            return self._finish(attempt, PaymentStatus.DISMISSED)

        if event.kind == "failure":
            return self._finish(
                attempt,
                PaymentStatus.GATEWAY_ERROR,
                reason=event.reason or "Payment failed",
            )

        if event.gateway_order_id != attempt.gateway_order_id:
            logger.warning(
                "Discarding success callback for order %s; attempt %s issued %s",
                event.gateway_order_id,
                attempt.attempt_id,
                attempt.gateway_order_id,
            )
            return self._finish(
                attempt,
                PaymentStatus.GATEWAY_ERROR,
                reason="Callback does not match the issued order",
            )

        if not event.payment_id or not event.signature:
            return self._finish(
                attempt,
                PaymentStatus.GATEWAY_ERROR,
                reason="Incomplete success payload",
            )

        logger.info(
            "Payment %s authorized for order %s",
            event.payment_id,
            attempt.gateway_order_id,
        )
        return attempt.model_copy(
            update={
                "status": PaymentStatus.SUCCEEDED,
                "payment_id": event.payment_id,
                "signature": event.signature,
            }
        )

    @staticmethod
    def _finish(
        attempt: PaymentAttempt,
        status: PaymentStatus,
        reason: str | None = None,
    ) -> PaymentAttempt:
        return attempt.model_copy(update={"status": status, "failure_reason": reason})
