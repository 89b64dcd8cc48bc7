import logging

from pydantic import ValidationError

from src.api.schemas.schemas import (
    InventoryItemOut,
    ResourceUnitOut,
    SearchRequest,
    SeatLayoutRequest,
)
from src.domain.clock import Clock, utc_now
from src.domain.exceptions import (
    CallerError,
    LayoutUnavailable,
    SearchFailed,
    TransientRemoteFailure,
)
from src.domain.models import ResourceUnit, SearchCriteria, SearchResult
from src.infrastructure.http.api_client import BookingApiClient, RemoteRejection

logger = logging.getLogger(__name__)


def validate_criteria(criteria: SearchCriteria, clock: Clock = utc_now) -> None:
    if not criteria.origin.strip():
        raise CallerError("Origin is required")
    if not criteria.destination.strip():
        raise CallerError("Destination is required")
    if criteria.origin.strip().lower() == criteria.destination.strip().lower():
        raise CallerError("Origin and destination must differ")
    if criteria.travel_date < clock().date():
        raise CallerError("Travel date cannot be in the past")
    if criteria.passengers < 1:
        raise CallerError("At least one passenger is required")


class InventorySearchClient:
    """Queries bookable runs for a route and date."""

    def __init__(self, api: BookingApiClient, clock: Clock = utc_now):
        self.api = api
        self.clock = clock

    async def search(self, criteria: SearchCriteria) -> SearchResult:
        validate_criteria(criteria, self.clock)

        payload = SearchRequest(
            origin=criteria.origin.strip(),
            destination=criteria.destination.strip(),
            travel_date=criteria.travel_date,
            passengers=criteria.passengers,
        ).model_dump(by_alias=True, mode="json")

        try:
            data = await self.api.post("/bus/search", payload)
            items = [InventoryItemOut.model_validate(row).to_domain() for row in data or []]
        except TransientRemoteFailure as exc:
            raise SearchFailed(str(exc)) from exc
        except RemoteRejection as exc:
            raise SearchFailed(exc.message) from exc
        except ValidationError as exc:
            raise SearchFailed("Malformed search response") from exc

        logger.info(
            "Search %s -> %s on %s returned %s items",
            criteria.origin,
            criteria.destination,
            criteria.travel_date,
            len(items),
        )
        return SearchResult(criteria=criteria, items=tuple(items))


class ResourceLayoutClient:
    """Fetches the seat map of one run. The result is a best-effort snapshot."""

    def __init__(self, api: BookingApiClient):
        self.api = api

    async def fetch_layout(self, inventory_item_id: str) -> list[ResourceUnit]:
        if not inventory_item_id:
            raise CallerError("Inventory item id is required")

        payload = SeatLayoutRequest(
            inventory_item_id=inventory_item_id,
        ).model_dump(by_alias=True)

        try:
            data = await self.api.post("/bus/seat-layout", payload)
            units = [ResourceUnitOut.model_validate(row).to_domain() for row in data or []]
        except TransientRemoteFailure as exc:
            raise LayoutUnavailable(inventory_item_id, str(exc)) from exc
        except RemoteRejection as exc:
            raise LayoutUnavailable(inventory_item_id, exc.message) from exc
        except ValidationError as exc:
            raise LayoutUnavailable(inventory_item_id, "Malformed layout response") from exc

        if not units:
            raise LayoutUnavailable(inventory_item_id, "Layout is empty")
        return units
