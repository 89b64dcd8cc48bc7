import asyncio
import logging

from pydantic import ValidationError

from src.api.schemas.schemas import BookingOut, ConfirmRequest
from src.domain.exceptions import (
    CallerError,
    ConfirmationFailed,
    TransientRemoteFailure,
)
from src.domain.models import BookingRecord
from src.infrastructure.http.api_client import BookingApiClient, RemoteRejection

logger = logging.getLogger(__name__)


class BookingConfirmationService:
    """
    Exchanges a hold and a payment proof for a booking record.

    The request body is built once per (hold_id, payment_id) and resent
    unchanged on every retry; the booking API keys on that pair.
    """

    def __init__(
        self,
        api: BookingApiClient,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
    ):
        self.api = api
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self._records: dict[tuple[str, str], BookingRecord] = {}

    async def confirm(
        self,
        hold_id: str,
        payment_id: str,
        order_reference: str,
        amount: int,
        currency: str,
        signature: str,
    ) -> BookingRecord:
        if not hold_id or not payment_id or not order_reference:
            raise CallerError("hold_id, payment_id and order_reference are required")

        key = (hold_id, payment_id)
        if key in self._records:
            return self._records[key]

        payload = ConfirmRequest(
            hold_id=hold_id,
            payment_id=payment_id,
            gateway_order_id=order_reference,
            signature=signature,
            amount=amount,
            currency=currency,
        ).model_dump(by_alias=True)

        last_error: TransientRemoteFailure | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                data = await self.api.post("/bus/book", payload)
            except TransientRemoteFailure as exc:
                last_error = exc
                logger.warning(
                    "Confirm attempt %s/%s for hold %s payment %s failed: %s",
                    attempt,
                    self.max_attempts,
                    hold_id,
                    payment_id,
                    exc,
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay)
                continue
            except RemoteRejection as exc:
                raise ConfirmationFailed(exc.message, code=exc.code, retryable=False) from exc

            record = self._parse(data, hold_id, payment_id)
            self._records[key] = record
            logger.info(
                "Booking %s confirmed for hold %s payment %s",
                record.confirmation_code,
                hold_id,
                payment_id,
            )
            return record

        raise ConfirmationFailed(
            str(last_error), code="TRANSIENT", retryable=True
        ) from last_error

    @staticmethod
    def _parse(data, hold_id: str, payment_id: str) -> BookingRecord:
        try:
            record = BookingOut.model_validate(data).to_domain()
        except ValidationError as exc:
            raise ConfirmationFailed(
                "Malformed confirmation response", code="MALFORMED_RESPONSE", retryable=True
            ) from exc

        if record.hold_id != hold_id or record.payment_id != payment_id:
            raise ConfirmationFailed(
                "Booking record does not reference this hold and payment",
                code="RECORD_MISMATCH",
            )
        if not record.confirmation_code:
            raise ConfirmationFailed(
                "Booking record has no confirmation code",
                code="MALFORMED_RESPONSE",
                retryable=True,
            )
        return record
