# src/domain/models.py

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

from src.domain.state_machine import WorkflowStage, WorkflowTransitions


class DomainModel(BaseModel):
    """Immutable value shared between the workflow and its components."""

    model_config = ConfigDict(frozen=True)


class UnitStatus(str, Enum):
    AVAILABLE = "available"
    HELD_BY_OTHER = "held_by_other"
    BOOKED = "booked"
    SELECTED_BY_ME = "selected_by_me"


class PaymentStatus(str, Enum):
    CREATED = "created"
    AWAITING_USER = "awaiting_user"
    SUCCEEDED = "succeeded"
    DISMISSED = "dismissed"
    GATEWAY_ERROR = "gateway_error"

    @property
    def is_terminal(self) -> bool:
        return self in (
            PaymentStatus.SUCCEEDED,
            PaymentStatus.DISMISSED,
            PaymentStatus.GATEWAY_ERROR,
        )


class ErrorKind(str, Enum):
    TRANSIENT_REMOTE_FAILURE = "transient_remote_failure"
    BUSINESS_REJECTION = "business_rejection"
    PAYMENT_NOT_COMPLETED = "payment_not_completed"
    CONFIRMATION_AMBIGUOUS = "confirmation_ambiguous"


class Recovery(str, Enum):
    RETRY_STEP = "retry_step"
    RESELECT_SEATS = "reselect_seats"
    RETRY_PAYMENT = "retry_payment"
    RETRY_CONFIRMATION = "retry_confirmation"
    CONTACT_SUPPORT = "contact_support"
    START_OVER = "start_over"


class UserContext(DomainModel):
    user_id: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None


class SearchCriteria(DomainModel):
    origin: str
    destination: str
    travel_date: date
    passengers: int = 1


class InventoryItem(DomainModel):
    item_id: str
    operator_name: str
    bus_type: str | None = None
    departure_time: datetime
    arrival_time: datetime | None = None
    layout_ref: str
    base_fare_paise: int
    rating: float | None = None
    available_seats: int | None = None


class SearchResult(DomainModel):
    criteria: SearchCriteria
    items: tuple[InventoryItem, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.items


class ResourceUnit(DomainModel):
    unit_id: str
    category: str
    deck: str | None = None
    price_paise: int
    status: UnitStatus = UnitStatus.AVAILABLE

    @property
    def is_selectable(self) -> bool:
        return self.status in (UnitStatus.AVAILABLE, UnitStatus.SELECTED_BY_ME)


class PassengerManifestEntry(DomainModel):
    name: str
    age: int
    gender: str
    email: str | None = None
    phone: str | None = None

    def with_contact(self, user: UserContext) -> "PassengerManifestEntry":
        """Fill blank contact fields from the signed-in user."""
        return self.model_copy(
            update={
                "email": self.email or user.email,
                "phone": self.phone or user.phone,
            }
        )


class Hold(DomainModel):
    hold_id: str
    inventory_item_id: str
    unit_ids: tuple[str, ...]
    expires_at: datetime
    manifest: tuple[PassengerManifestEntry, ...] = ()
    amount_paise: int
    currency: str

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class PaymentAttempt(DomainModel):
    attempt_id: str
    hold_id: str
    order_id: str
    gateway_order_id: str
    amount_paise: int
    currency: str
    status: PaymentStatus
    payment_id: str | None = None
    signature: str | None = None
    failure_reason: str | None = None
    created_at: datetime

    @property
    def succeeded(self) -> bool:
        return self.status == PaymentStatus.SUCCEEDED


class BookingRecord(DomainModel):
    confirmation_code: str
    hold_id: str
    payment_id: str
    gateway_order_id: str
    unit_ids: tuple[str, ...]
    amount_paise: int
    currency: str
    confirmed_at: datetime
    payment: PaymentAttempt | None = None


class ErrorView(DomainModel):
    kind: ErrorKind
    message: str
    retryable: bool
    recovery: Recovery
    stage: WorkflowStage | None = None
    funds_may_be_captured: bool = False
    unit_ids: tuple[str, ...] = ()


class WorkflowState(DomainModel):
    stage: WorkflowStage = WorkflowStage.SEARCH
    criteria: SearchCriteria | None = None
    results: tuple[InventoryItem, ...] = ()
    selected_item: InventoryItem | None = None
    layout: tuple[ResourceUnit, ...] = ()
    hold: Hold | None = None
    attempts: tuple[PaymentAttempt, ...] = ()
    booking: BookingRecord | None = None
    error: ErrorView | None = None
    failure: ErrorView | None = None
    abandoned_hold: Hold | None = None
    unresolved_payment: PaymentAttempt | None = None

    @property
    def latest_attempt(self) -> PaymentAttempt | None:
        return self.attempts[-1] if self.attempts else None

    @property
    def confirmable_attempt(self) -> PaymentAttempt | None:
        """The succeeded attempt for the current hold that still lacks a booking."""
        attempt = self.latest_attempt
        if (
            attempt is not None
            and self.hold is not None
            and self.booking is None
            and attempt.succeeded
            and attempt.hold_id == self.hold.hold_id
        ):
            return attempt
        return None

    @property
    def selected_unit_ids(self) -> tuple[str, ...]:
        if self.hold is not None:
            return self.hold.unit_ids
        return tuple(
            unit.unit_id
            for unit in self.layout
            if unit.status == UnitStatus.SELECTED_BY_ME
        )

    @property
    def total_amount_paise(self) -> int:
        if self.hold is not None:
            return self.hold.amount_paise
        selected = set(self.selected_unit_ids)
        return sum(unit.price_paise for unit in self.layout if unit.unit_id in selected)


class WorkflowSnapshot(DomainModel):
    """Read-only projection handed to UI and CLI layers."""

    stage: WorkflowStage
    progress: int | None
    item_id: str | None = None
    selected_unit_ids: tuple[str, ...] = ()
    total_amount_paise: int = 0
    currency: str
    hold_id: str | None = None
    hold_expires_at: datetime | None = None
    confirmation_code: str | None = None
    error: ErrorView | None = None
    seats_held_until: datetime | None = None

    @classmethod
    def from_state(cls, state: WorkflowState, currency: str) -> "WorkflowSnapshot":
        hold = state.hold
        return cls(
            stage=state.stage,
            progress=WorkflowTransitions.progress(state.stage),
            item_id=state.selected_item.item_id if state.selected_item else None,
            selected_unit_ids=state.selected_unit_ids,
            total_amount_paise=state.total_amount_paise,
            currency=hold.currency if hold else currency,
            hold_id=hold.hold_id if hold else None,
            hold_expires_at=hold.expires_at if hold else None,
            confirmation_code=(
                state.booking.confirmation_code if state.booking else None
            ),
            error=state.failure or state.error,
            seats_held_until=(
                state.abandoned_hold.expires_at if state.abandoned_hold else None
            ),
        )
