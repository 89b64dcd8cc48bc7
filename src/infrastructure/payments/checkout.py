# src/infrastructure/payments/checkout.py

import asyncio
import logging
from typing import Callable, Literal, Protocol

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class CheckoutPrefill(BaseModel):
    name: str | None = None
    email: str | None = None
    contact: str | None = None


class CheckoutRequest(BaseModel):
    """Options handed to the gateway's hosted checkout."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    key_id: str
    amount: int
    currency: str
    order_id: str
    description: str
    prefill: CheckoutPrefill
    on_success: Callable[[str, str, str], None]
    on_dismiss: Callable[[], None]
    on_failure: Callable[[str], None]


class CheckoutEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["success", "dismiss", "failure"]
    payment_id: str | None = None
    gateway_order_id: str | None = None
    signature: str | None = None
    reason: str | None = None


class CheckoutLauncher(Protocol):
    """
    The gateway's client SDK. `open` shows the checkout and returns at once;
    the outcome arrives later through the request callbacks.
    """

    def open(self, request: CheckoutRequest) -> None:
        ...

    def close(self) -> None:
        ...


class PaymentCallbackChannel:
    """
    One-shot event channel for a single payment attempt.
    The first event wins; anything after that, or after close(), is dropped.
    Callbacks may fire from a foreign thread.
    """

    def __init__(self, attempt_id: str):
        self.attempt_id = attempt_id
        self._loop = asyncio.get_running_loop()
        self._future: asyncio.Future[CheckoutEvent] = self._loop.create_future()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def on_success(self, payment_id: str, gateway_order_id: str, signature: str) -> None:
        self._deliver(
            CheckoutEvent(
                kind="success",
                payment_id=payment_id,
                gateway_order_id=gateway_order_id,
                signature=signature,
            )
        )

    def on_dismiss(self) -> None:
        self._deliver(CheckoutEvent(kind="dismiss"))

    def on_failure(self, reason: str) -> None:
        self._deliver(CheckoutEvent(kind="failure", reason=reason))

    async def wait(self, timeout: float) -> CheckoutEvent:
        return await asyncio.wait_for(asyncio.shield(self._future), timeout=timeout)

    def close(self) -> None:
        self._closed = True
        if not self._future.done():
            self._future.cancel()

    def _deliver(self, event: CheckoutEvent) -> None:
        self._loop.call_soon_threadsafe(self._resolve, event)

    def _resolve(self, event: CheckoutEvent) -> None:
        if self._closed or self._future.done():
            logger.warning(
                "Ignoring late %s callback for payment attempt %s",
                event.kind,
                self.attempt_id,
            )
            return
        self._future.set_result(event)
