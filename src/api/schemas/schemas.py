from datetime import date, datetime
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.domain.models import (
    BookingRecord,
    Hold,
    InventoryItem,
    PassengerManifestEntry,
    ResourceUnit,
    UnitStatus,
)

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiResponse(CamelModel, Generic[T]):
    success: bool = True
    data: T
    message: str | None = None


class SearchRequest(CamelModel):
    origin: str
    destination: str
    travel_date: date = Field(alias="date")
    passengers: int = Field(default=1, ge=1)


class InventoryItemOut(CamelModel):
    id: str
    operator_name: str
    bus_type: str | None = None
    departure_time: datetime
    arrival_time: datetime | None = None
    layout_ref: str
    base_fare: int
    rating: float | None = None
    available_seats: int | None = None

    def to_domain(self) -> InventoryItem:
        return InventoryItem(
            item_id=self.id,
            operator_name=self.operator_name,
            bus_type=self.bus_type,
            departure_time=self.departure_time,
            arrival_time=self.arrival_time,
            layout_ref=self.layout_ref,
            base_fare_paise=self.base_fare,
            rating=self.rating,
            available_seats=self.available_seats,
        )


class SeatLayoutRequest(CamelModel):
    inventory_item_id: str


_WIRE_TO_UNIT_STATUS = {
    "available": UnitStatus.AVAILABLE,
    "held": UnitStatus.HELD_BY_OTHER,
    "booked": UnitStatus.BOOKED,
}


class ResourceUnitOut(CamelModel):
    id: str
    category: str
    deck: str | None = None
    price: int
    status: Literal["available", "held", "booked"]

    def to_domain(self) -> ResourceUnit:
        return ResourceUnit(
            unit_id=self.id,
            category=self.category,
            deck=self.deck,
            price_paise=self.price,
            status=_WIRE_TO_UNIT_STATUS[self.status],
        )


class PassengerIn(CamelModel):
    name: str
    age: int
    gender: str
    email: str | None = None
    phone: str | None = None

    @classmethod
    def from_domain(cls, entry: PassengerManifestEntry) -> "PassengerIn":
        return cls(**entry.model_dump())


class HoldRequest(CamelModel):
    inventory_item_id: str
    unit_ids: list[str]
    manifest: list[PassengerIn]
    idempotency_key: str
    user_id: str | None = None


class HoldOut(CamelModel):
    hold_id: str
    inventory_item_id: str
    unit_ids: list[str]
    expires_at: datetime
    amount: int
    currency: str

    def to_domain(self, manifest: list[PassengerManifestEntry]) -> Hold:
        return Hold(
            hold_id=self.hold_id,
            inventory_item_id=self.inventory_item_id,
            unit_ids=tuple(self.unit_ids),
            expires_at=self.expires_at,
            manifest=tuple(manifest),
            amount_paise=self.amount,
            currency=self.currency,
        )


class OrderRequest(CamelModel):
    hold_id: str
    amount: int = Field(gt=0)
    currency: str


class OrderOut(CamelModel):
    order_id: str
    gateway_order_id: str
    amount: int
    currency: str
    key_id: str


class ConfirmRequest(CamelModel):
    hold_id: str
    payment_id: str
    gateway_order_id: str
    signature: str
    amount: int
    currency: str


class BookingOut(CamelModel):
    confirmation_code: str
    hold_id: str
    payment_id: str
    gateway_order_id: str
    unit_ids: list[str]
    amount: int
    currency: str
    confirmed_at: datetime

    def to_domain(self) -> BookingRecord:
        return BookingRecord(
            confirmation_code=self.confirmation_code,
            hold_id=self.hold_id,
            payment_id=self.payment_id,
            gateway_order_id=self.gateway_order_id,
            unit_ids=tuple(self.unit_ids),
            amount_paise=self.amount,
            currency=self.currency,
            confirmed_at=self.confirmed_at,
        )


class HealthResponse(BaseModel):
    message: str
