import logging
from typing import Sequence

from pydantic import ValidationError

from src.api.schemas.schemas import HoldOut, HoldRequest, PassengerIn
from src.domain.clock import Clock, as_utc, utc_now
from src.domain.exceptions import (
    CallerError,
    HoldMismatch,
    HoldRequestRejected,
    TransientRemoteFailure,
    UnitsUnavailable,
)
from src.domain.models import Hold, PassengerManifestEntry
from src.infrastructure.http.api_client import BookingApiClient, RemoteRejection

logger = logging.getLogger(__name__)


def ensure_hold_matches(hold: Hold, unit_ids: Sequence[str], now) -> None:
    """
    A granted hold must cover exactly the requested units
    and must not already be expired.
    """
    if list(hold.unit_ids) != list(unit_ids):
        raise HoldMismatch(
            requested=list(unit_ids), granted=list(hold.unit_ids), hold=hold
        )
    if hold.is_expired(now):
        raise HoldRequestRejected(
            f"Hold {hold.hold_id} arrived already expired", code="HOLD_EXPIRED"
        )


class SeatHoldManager:
    """
    Requests a time-boxed exclusive hold on seats. The remote inventory is
    the source of truth and may refuse seats the local snapshot showed free.
    """

    def __init__(
        self,
        api: BookingApiClient,
        max_seats: int = 6,
        clock: Clock = utc_now,
    ):
        self.api = api
        self.max_seats = max_seats
        self.clock = clock

    def validate_request(
        self,
        inventory_item_id: str,
        unit_ids: Sequence[str],
        manifest: Sequence[PassengerManifestEntry],
    ) -> None:
        if not inventory_item_id:
            raise CallerError("Inventory item id is required")
        if not unit_ids:
            raise CallerError("Select at least one seat")
        if len(unit_ids) > self.max_seats:
            raise CallerError(f"You can select up to {self.max_seats} seats")
        if len(set(unit_ids)) != len(unit_ids):
            raise CallerError("Seat ids must be distinct")
        if len(manifest) != len(unit_ids):
            raise CallerError(
                f"Expected {len(unit_ids)} passengers, got {len(manifest)}"
            )

    async def request_hold(
        self,
        inventory_item_id: str,
        unit_ids: Sequence[str],
        manifest: Sequence[PassengerManifestEntry],
        idempotency_key: str,
        user_id: str | None = None,
    ) -> Hold:
        self.validate_request(inventory_item_id, unit_ids, manifest)

        payload = HoldRequest(
            inventory_item_id=inventory_item_id,
            unit_ids=list(unit_ids),
            manifest=[PassengerIn.from_domain(entry) for entry in manifest],
            idempotency_key=idempotency_key,
            user_id=user_id,
        ).model_dump(by_alias=True)

        try:
            data = await self.api.post("/bus/block", payload)
        except RemoteRejection as exc:
            raise self._map_rejection(exc, unit_ids) from exc

        try:
            granted = HoldOut.model_validate(data)
        except ValidationError as exc:
            # The hold may exist remotely; it will expire on its own.
            raise TransientRemoteFailure("Malformed hold response") from exc

        hold = granted.to_domain(list(manifest))
        hold = hold.model_copy(update={"expires_at": as_utc(hold.expires_at)})
        try:
            ensure_hold_matches(hold, unit_ids, self.clock())
        except HoldMismatch:
            logger.warning(
                "Hold %s covers %s, requested %s; seats stay held until %s",
                hold.hold_id,
                ",".join(hold.unit_ids),
                ",".join(unit_ids),
                hold.expires_at.isoformat(),
            )
            raise

        logger.info(
            "Hold %s placed on %s for seats %s until %s",
            hold.hold_id,
            inventory_item_id,
            ",".join(hold.unit_ids),
            hold.expires_at.isoformat(),
        )
        return hold

    @staticmethod
    def _map_rejection(exc: RemoteRejection, unit_ids: Sequence[str]) -> Exception:
        if exc.code == "UNITS_UNAVAILABLE":
            raced = []
            if isinstance(exc.data, dict):
                raced = list(exc.data.get("unitIds") or [])
            return UnitsUnavailable(raced or list(unit_ids))
        return HoldRequestRejected(exc.message, code=exc.code)
