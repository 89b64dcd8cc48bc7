import logging
from contextlib import contextmanager
from typing import Awaitable, Sequence
from uuid import uuid4

import httpx

from src.application.confirmation_service import BookingConfirmationService
from src.application.inventory_clients import (
    InventorySearchClient,
    ResourceLayoutClient,
    validate_criteria,
)
from src.application.payment_orchestrator import PaymentOrchestrator
from src.application.seat_hold_manager import SeatHoldManager, ensure_hold_matches
from src.config import Settings
from src.domain.clock import Clock, utc_now
from src.domain.exceptions import (
    CallerError,
    ConfirmationAmbiguous,
    ConfirmationFailed,
    HoldExpired,
    HoldMismatch,
    HoldRequestRejected,
    InvalidWorkflowTransition,
    LayoutUnavailable,
    OperationInProgress,
    PaymentNotCompleted,
    SearchFailed,
    TransientRemoteFailure,
    UnconfirmedPaymentError,
    UnitsUnavailable,
)
from src.domain.models import (
    ErrorKind,
    ErrorView,
    Hold,
    InventoryItem,
    PassengerManifestEntry,
    PaymentAttempt,
    Recovery,
    ResourceUnit,
    SearchCriteria,
    UnitStatus,
    UserContext,
    WorkflowSnapshot,
    WorkflowState,
)
from src.domain.state_machine import WorkflowStage, WorkflowTransitions
from src.infrastructure.http.api_client import BookingApiClient
from src.infrastructure.payments.checkout import CheckoutLauncher

logger = logging.getLogger(__name__)


class BookingWorkflow:
    """
    Client-side orchestrator for one booking attempt:

        search -> results -> seat selection -> payment -> confirmation

    Owns the workflow state exclusively. Components return values which are
    folded into a fresh immutable state. Mutating calls (hold, pay, confirm)
    are serialized; reads may overlap each other but never a mutation.
    """

    def __init__(
        self,
        search_client: InventorySearchClient,
        layout_client: ResourceLayoutClient,
        hold_manager: SeatHoldManager,
        payment_orchestrator: PaymentOrchestrator,
        confirmation_service: BookingConfirmationService,
        user: UserContext,
        clock: Clock = utc_now,
        currency: str = "INR",
    ):
        self.search_client = search_client
        self.layout_client = layout_client
        self.hold_manager = hold_manager
        self.payment_orchestrator = payment_orchestrator
        self.confirmation_service = confirmation_service
        self.user = user
        self.clock = clock
        self.currency = currency

        self._state = WorkflowState()
        self._mutation: str | None = None
        self._reads = 0
        self._search_token = 0
        self._selection_token = 0
        self._hold_key: tuple[tuple, str] | None = None
        self._api: BookingApiClient | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        user: UserContext,
        launcher: CheckoutLauncher,
        clock: Clock = utc_now,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "BookingWorkflow":
        api = BookingApiClient.from_settings(settings, transport=transport)
        workflow = cls(
            search_client=InventorySearchClient(api, clock=clock),
            layout_client=ResourceLayoutClient(api),
            hold_manager=SeatHoldManager(
                api, max_seats=settings.max_seats_per_booking, clock=clock
            ),
            payment_orchestrator=PaymentOrchestrator(
                api,
                launcher,
                user,
                clock=clock,
                grace_seconds=settings.checkout_grace_seconds,
            ),
            confirmation_service=BookingConfirmationService(
                api,
                max_attempts=settings.confirm_max_attempts,
                retry_delay=settings.confirm_retry_delay,
            ),
            user=user,
            clock=clock,
            currency=settings.currency,
        )
        workflow._api = api
        return workflow

    async def aclose(self) -> None:
        if self._api is not None:
            await self._api.aclose()

    # -----------------------------
    # Read-only projection
    # -----------------------------
    @property
    def state(self) -> WorkflowState:
        return self._state

    def snapshot(self) -> WorkflowSnapshot:
        return WorkflowSnapshot.from_state(self._state, self.currency)

    # -----------------------------
    # Search and item selection
    # -----------------------------
    async def search(self, criteria: SearchCriteria) -> WorkflowState:
        stage = self._state.stage
        if stage not in (WorkflowStage.SEARCH, WorkflowStage.RESULTS):
            raise InvalidWorkflowTransition(
                stage.value, WorkflowStage.RESULTS.value, "reset to start a new search"
            )
        validate_criteria(criteria, self.clock)

        with self._read("search"):
            self._search_token += 1
            self._selection_token += 1
            token = self._search_token
            try:
                result = await self.search_client.search(criteria)
            except SearchFailed as exc:
                if token == self._search_token:
                    self._record_error(
                        ErrorKind.TRANSIENT_REMOTE_FAILURE,
                        exc.reason,
                        Recovery.RETRY_STEP,
                        retryable=True,
                    )
                raise

        if token != self._search_token:
            logger.debug("Discarding superseded search for %s", criteria)
            return self._state

        self._transition(
            WorkflowStage.RESULTS,
            criteria=criteria,
            results=result.items,
            selected_item=None,
            layout=(),
            error=None,
        )
        return self._state

    def select_item(self, item_id: str) -> Awaitable[WorkflowState]:
        """
        Choose an item and load its layout. The selection is claimed when
        this is called, so the last item clicked wins even if an earlier
        layout arrives later; superseded layouts are discarded.
        """
        stage = self._state.stage
        if stage not in (WorkflowStage.RESULTS, WorkflowStage.SEAT_SELECTION):
            raise InvalidWorkflowTransition(stage.value, WorkflowStage.SEAT_SELECTION.value)

        item = next((row for row in self._state.results if row.item_id == item_id), None)
        if item is None:
            raise CallerError(f"Item {item_id} is not among the search results")

        self._ensure_idle("select_item")
        self._selection_token += 1
        return self._load_item(item, self._selection_token)

    async def _load_item(self, item: InventoryItem, token: int) -> WorkflowState:
        with self._read("select_item"):
            try:
                units = await self.layout_client.fetch_layout(item.item_id)
            except LayoutUnavailable as exc:
                if token == self._selection_token:
                    self._record_error(
                        ErrorKind.TRANSIENT_REMOTE_FAILURE,
                        exc.reason,
                        Recovery.RETRY_STEP,
                        retryable=True,
                    )
                raise

        if token != self._selection_token:
            logger.debug("Discarding superseded layout for %s", item.item_id)
            return self._state

        self._transition(
            WorkflowStage.SEAT_SELECTION,
            selected_item=item,
            layout=tuple(units),
            error=None,
        )
        return self._state

    def return_to_results(self) -> WorkflowState:
        """Change item. Only possible before a hold exists."""
        self._ensure_idle("return_to_results")
        self._ensure_no_hold(WorkflowStage.RESULTS)
        self._selection_token += 1
        self._transition(
            WorkflowStage.RESULTS,
            selected_item=None,
            layout=(),
            error=None,
        )
        return self._state

    def return_to_search(self) -> WorkflowState:
        """Refine the query. Only possible before a hold exists."""
        self._ensure_idle("return_to_search")
        self._ensure_no_hold(WorkflowStage.SEARCH)
        self._search_token += 1
        self._selection_token += 1
        self._transition(WorkflowStage.SEARCH, results=(), error=None)
        return self._state

    # -----------------------------
    # Hold
    # -----------------------------
    async def select_seats(
        self,
        unit_ids: Sequence[str],
        manifest: Sequence[PassengerManifestEntry],
    ) -> WorkflowState:
        state = self._state
        if state.stage != WorkflowStage.SEAT_SELECTION or state.selected_item is None:
            raise InvalidWorkflowTransition(state.stage.value, WorkflowStage.PAYMENT.value)

        item = state.selected_item
        unit_ids = list(unit_ids)
        self.hold_manager.validate_request(item.item_id, unit_ids, manifest)
        self._ensure_selectable(unit_ids)
        manifest = [entry.with_contact(self.user) for entry in manifest]
        idempotency_key = self._hold_idempotency_key(item.item_id, unit_ids, manifest)

        with self._mutating("request_hold"):
            try:
                hold = await self.hold_manager.request_hold(
                    item.item_id,
                    unit_ids,
                    manifest,
                    idempotency_key=idempotency_key,
                    user_id=self.user.user_id,
                )
                self._verify_hold(hold, item.item_id, unit_ids)
            except UnitsUnavailable as exc:
                self._hold_key = None
                await self._reselect_after_race(exc)
                raise
            except HoldMismatch as exc:
                self._hold_key = None
                self._reject_hold(exc)
                raise
            except HoldRequestRejected as exc:
                self._hold_key = None
                self._record_error(
                    ErrorKind.BUSINESS_REJECTION,
                    str(exc),
                    Recovery.RESELECT_SEATS,
                    retryable=False,
                )
                raise
            except TransientRemoteFailure as exc:
                self._record_error(
                    ErrorKind.TRANSIENT_REMOTE_FAILURE,
                    str(exc),
                    Recovery.RETRY_STEP,
                    retryable=True,
                )
                raise

            self._hold_key = None
            self._transition(
                WorkflowStage.PAYMENT,
                hold=hold,
                attempts=(),
                layout=self._mark_selected(self._state.layout, hold.unit_ids),
                error=None,
            )
        return self._state

    # -----------------------------
    # Payment and confirmation
    # -----------------------------
    async def pay(self) -> WorkflowState:
        """
        Authorize payment for the current hold and confirm the booking.
        With a succeeded but unconfirmed payment, only confirmation is
        re-driven with the identical (hold_id, payment_id) pair.
        """
        state = self._state
        hold = state.hold
        if state.stage != WorkflowStage.PAYMENT or hold is None:
            raise InvalidWorkflowTransition(
                state.stage.value, WorkflowStage.CONFIRMATION.value, "no hold to pay for"
            )

        with self._mutating("pay"):
            attempt = state.confirmable_attempt
            if attempt is None:
                attempt = await self._authorize(hold)
            await self._confirm(hold, attempt)
        return self._state

    async def _authorize(self, hold: Hold) -> PaymentAttempt:
        if hold.is_expired(self.clock()):
            await self._expire_hold(hold)
            raise HoldExpired(hold.hold_id)

        try:
            attempt = await self.payment_orchestrator.authorize(
                hold, hold.amount_paise, hold.currency
            )
        except HoldExpired:
            await self._expire_hold(hold)
            raise
        except (PaymentNotCompleted, TransientRemoteFailure) as exc:
            self._record_error(
                ErrorKind.PAYMENT_NOT_COMPLETED
                if isinstance(exc, PaymentNotCompleted)
                else ErrorKind.TRANSIENT_REMOTE_FAILURE,
                str(exc),
                Recovery.RETRY_PAYMENT,
                retryable=True,
            )
            raise

        self._fold(attempts=self._state.attempts + (attempt,))
        if attempt.succeeded:
            return attempt

        if hold.is_expired(self.clock()):
            await self._expire_hold(hold)
            raise HoldExpired(hold.hold_id)

        self._record_error(
            ErrorKind.PAYMENT_NOT_COMPLETED,
            attempt.failure_reason or "Payment was not completed",
            Recovery.RETRY_PAYMENT,
            retryable=True,
        )
        raise PaymentNotCompleted(attempt.attempt_id, attempt.status.value, attempt.failure_reason)

    async def _confirm(self, hold: Hold, attempt: PaymentAttempt) -> None:
        if not attempt.succeeded or attempt.hold_id != hold.hold_id:
            raise InvalidWorkflowTransition(
                WorkflowStage.PAYMENT.value,
                WorkflowStage.CONFIRMATION.value,
                "payment has not succeeded for this hold",
            )

        try:
            record = await self.confirmation_service.confirm(
                hold.hold_id,
                attempt.payment_id,
                attempt.gateway_order_id,
                attempt.amount_paise,
                attempt.currency,
                signature=attempt.signature,
            )
            if record.hold_id != hold.hold_id or record.payment_id != attempt.payment_id:
                raise ConfirmationFailed(
                    "Booking record does not reference this hold and payment",
                    code="RECORD_MISMATCH",
                )
        except ConfirmationFailed as exc:
            raise self._confirmation_ambiguous(hold, attempt, exc) from exc

        self._transition(
            WorkflowStage.CONFIRMATION,
            booking=record.model_copy(update={"payment": attempt}),
            error=None,
        )

    def _confirmation_ambiguous(
        self,
        hold: Hold,
        attempt: PaymentAttempt,
        exc: ConfirmationFailed,
    ) -> ConfirmationAmbiguous:
        logger.error(
            "Payment %s captured but booking for hold %s unconfirmed (%s): %s",
            attempt.payment_id,
            hold.hold_id,
            exc.code,
            exc.reason,
        )
        if exc.retryable:
            message = (
                f"Payment {attempt.payment_id} was received but the booking is not "
                f"confirmed yet. Do not pay again; retry confirmation."
            )
            recovery = Recovery.RETRY_CONFIRMATION
        else:
            message = (
                f"Payment {attempt.payment_id} was received but the booking could not "
                f"be confirmed ({exc.reason}). Do not pay again; contact support "
                f"with this payment id."
            )
            recovery = Recovery.CONTACT_SUPPORT

        view = ErrorView(
            kind=ErrorKind.CONFIRMATION_AMBIGUOUS,
            message=message,
            retryable=exc.retryable,
            recovery=recovery,
            stage=WorkflowStage.PAYMENT,
            funds_may_be_captured=True,
        )
        if exc.retryable:
            self._fold(error=view)
        else:
            self._transition(WorkflowStage.FAILED, failure=view, error=None)

        return ConfirmationAmbiguous(
            hold.hold_id, attempt.payment_id, exc.reason, retryable=exc.retryable
        )

    # -----------------------------
    # Restart
    # -----------------------------
    def reset(self, force: bool = False) -> WorkflowState:
        """
        Start a new booking attempt. A live, unconsumed hold is not cancelled;
        it is reported through `abandoned_hold` and expires on its own.
        """
        self._ensure_idle("reset")
        state = self._state
        now = self.clock()

        unconfirmed = state.confirmable_attempt
        if unconfirmed is not None and not force:
            raise UnconfirmedPaymentError(unconfirmed.payment_id, unconfirmed.hold_id)

        abandoned = None
        if state.hold is not None and state.booking is None and not state.hold.is_expired(now):
            abandoned = state.hold
            logger.warning(
                "Abandoning hold %s; seats %s stay held until %s",
                abandoned.hold_id,
                ",".join(abandoned.unit_ids),
                abandoned.expires_at.isoformat(),
            )
        elif state.abandoned_hold is not None and not state.abandoned_hold.is_expired(now):
            abandoned = state.abandoned_hold

        if unconfirmed is not None:
            logger.error(
                "Reset with unconfirmed payment %s for hold %s",
                unconfirmed.payment_id,
                unconfirmed.hold_id,
            )

        self._hold_key = None
        self._search_token += 1
        self._selection_token += 1
        self._state = WorkflowState(
            abandoned_hold=abandoned,
            unresolved_payment=unconfirmed or state.unresolved_payment,
        )
        return self._state

    # -----------------------------
    # Internals
    # -----------------------------
    async def _reselect_after_race(self, exc: UnitsUnavailable) -> None:
        item = self._state.selected_item
        raced = set(exc.unit_ids)
        try:
            units = await self.layout_client.fetch_layout(item.item_id)
        except LayoutUnavailable:
            logger.warning("Layout refresh failed for %s; using local snapshot", item.item_id)
            units = self._release_selection(self._state.layout)

        # A stale snapshot must not offer the raced seats again.
        layout = tuple(
            unit.model_copy(update={"status": UnitStatus.HELD_BY_OTHER})
            if unit.unit_id in raced and unit.status == UnitStatus.AVAILABLE
            else unit
            for unit in units
        )
        self._transition(
            WorkflowStage.SEAT_SELECTION,
            layout=layout,
            error=ErrorView(
                kind=ErrorKind.BUSINESS_REJECTION,
                message=str(exc),
                retryable=False,
                recovery=Recovery.RESELECT_SEATS,
                stage=WorkflowStage.SEAT_SELECTION,
                unit_ids=tuple(exc.unit_ids),
            ),
        )

    async def _expire_hold(self, hold: Hold) -> None:
        logger.info("Hold %s expired before payment completed", hold.hold_id)
        try:
            units = await self.layout_client.fetch_layout(hold.inventory_item_id)
        except LayoutUnavailable:
            units = self._release_selection(self._state.layout)

        self._transition(
            WorkflowStage.SEAT_SELECTION,
            hold=None,
            attempts=(),
            layout=tuple(units),
            error=ErrorView(
                kind=ErrorKind.BUSINESS_REJECTION,
                message="Hold expired, please reselect seats",
                retryable=False,
                recovery=Recovery.RESELECT_SEATS,
                stage=WorkflowStage.PAYMENT,
                unit_ids=hold.unit_ids,
            ),
        )

    def _verify_hold(self, hold: Hold, item_id: str, unit_ids: list[str]) -> None:
        if hold.inventory_item_id != item_id:
            raise HoldMismatch(requested=unit_ids, granted=list(hold.unit_ids), hold=hold)
        try:
            ensure_hold_matches(hold, unit_ids, self.clock())
        except HoldRequestRejected as exc:
            raise HoldMismatch(
                requested=unit_ids, granted=list(hold.unit_ids), hold=hold
            ) from exc

    def _reject_hold(self, exc: HoldMismatch) -> None:
        """A granted but unusable hold is reported, never dropped silently."""
        granted = exc.hold
        abandoned = self._state.abandoned_hold
        if granted is not None and not granted.is_expired(self.clock()):
            abandoned = granted
            logger.warning(
                "Rejected hold %s; seats %s stay held until %s",
                granted.hold_id,
                ",".join(granted.unit_ids),
                granted.expires_at.isoformat(),
            )
        self._record_error(
            ErrorKind.BUSINESS_REJECTION,
            str(exc),
            Recovery.RESELECT_SEATS,
            retryable=False,
            abandoned_hold=abandoned,
        )

    def _ensure_selectable(self, unit_ids: list[str]) -> None:
        units = {unit.unit_id: unit for unit in self._state.layout}
        for unit_id in unit_ids:
            unit = units.get(unit_id)
            if unit is None:
                raise CallerError(f"Seat {unit_id} is not part of this layout")
            if not unit.is_selectable:
                raise CallerError(f"Seat {unit_id} is not available")

    def _hold_idempotency_key(
        self,
        item_id: str,
        unit_ids: list[str],
        manifest: list[PassengerManifestEntry],
    ) -> str:
        selection = (item_id, tuple(unit_ids), tuple(manifest))
        if self._hold_key is not None and self._hold_key[0] == selection:
            return self._hold_key[1]
        key = uuid4().hex
        self._hold_key = (selection, key)
        return key

    @staticmethod
    def _mark_selected(
        layout: tuple[ResourceUnit, ...],
        unit_ids: tuple[str, ...],
    ) -> tuple[ResourceUnit, ...]:
        return tuple(
            unit.model_copy(update={"status": UnitStatus.SELECTED_BY_ME})
            if unit.unit_id in unit_ids
            else unit
            for unit in layout
        )

    @staticmethod
    def _release_selection(layout: tuple[ResourceUnit, ...]) -> tuple[ResourceUnit, ...]:
        return tuple(
            unit.model_copy(update={"status": UnitStatus.AVAILABLE})
            if unit.status == UnitStatus.SELECTED_BY_ME
            else unit
            for unit in layout
        )

    def _ensure_no_hold(self, to_stage: WorkflowStage) -> None:
        if self._state.hold is not None:
            raise InvalidWorkflowTransition(
                self._state.stage.value,
                to_stage.value,
                "a hold exists; reset to start a new search",
            )

    def _ensure_idle(self, operation: str) -> None:
        if self._mutation is not None:
            raise OperationInProgress(operation, self._mutation)

    @contextmanager
    def _read(self, operation: str):
        self._ensure_idle(operation)
        self._reads += 1
        try:
            yield
        finally:
            self._reads -= 1

    @contextmanager
    def _mutating(self, operation: str):
        self._ensure_idle(operation)
        if self._reads:
            raise OperationInProgress(operation, "a read")
        self._mutation = operation
        try:
            yield
        finally:
            self._mutation = None

    def _transition(self, to_stage: WorkflowStage, **updates) -> None:
        WorkflowTransitions.validate_transition(self._state.stage, to_stage)
        self._state = self._state.model_copy(update={"stage": to_stage, **updates})

    def _fold(self, **updates) -> None:
        self._state = self._state.model_copy(update=updates)

    def _record_error(
        self,
        kind: ErrorKind,
        message: str,
        recovery: Recovery,
        retryable: bool,
        **updates,
    ) -> None:
        self._fold(
            error=ErrorView(
                kind=kind,
                message=message,
                retryable=retryable,
                recovery=recovery,
                stage=self._state.stage,
            ),
            **updates,
        )
