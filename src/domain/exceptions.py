

class BookingWorkflowError(Exception):
    """
    Base exception for all domain-level errors
    raised by the booking workflow and its collaborators.
    """


# -----------------------------
# Caller errors
# -----------------------------
class CallerError(BookingWorkflowError):
    """Invalid or missing input. Rejected before any remote call."""


class InvalidWorkflowTransition(CallerError):
    """
    Raised when an illegal workflow stage transition is attempted.
    """

    def __init__(self, from_stage: str, to_stage: str, detail: str | None = None):
        self.from_stage = from_stage
        self.to_stage = to_stage

        message = (
            f"Illegal workflow transition attempted: "
            f"{from_stage} -> {to_stage}"
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class OperationInProgress(CallerError):
    """Raised when a call arrives while a mutating call is outstanding."""

    def __init__(self, operation: str, in_flight: str):
        self.operation = operation
        self.in_flight = in_flight
        super().__init__(
            f"Cannot start {operation} while {in_flight} is in flight"
        )


class PaymentInFlight(CallerError):
    """Raised when a second payment attempt is started for the same hold."""

    def __init__(self, hold_id: str):
        self.hold_id = hold_id
        super().__init__(f"A payment attempt is already in flight for hold {hold_id}")


class UnconfirmedPaymentError(CallerError):
    """Raised when a reset would drop a captured but unconfirmed payment."""

    def __init__(self, payment_id: str, hold_id: str):
        self.payment_id = payment_id
        self.hold_id = hold_id
        super().__init__(
            f"Payment {payment_id} for hold {hold_id} is not yet confirmed"
        )


# -----------------------------
# Remote failures
# -----------------------------
class TransientRemoteFailure(BookingWorkflowError):
    """Network-class failure. Safe to retry the same call unmodified."""


class SearchFailed(BookingWorkflowError):
    """The search could not be performed (distinct from an empty result)."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Search failed: {reason}")


class LayoutUnavailable(BookingWorkflowError):
    """The seat layout for an inventory item could not be fetched."""

    def __init__(self, inventory_item_id: str, reason: str):
        self.inventory_item_id = inventory_item_id
        self.reason = reason
        super().__init__(f"Layout unavailable for {inventory_item_id}: {reason}")


# -----------------------------
# Business rejections
# -----------------------------
class BusinessRejection(BookingWorkflowError):
    """The remote side refused; fresher data is needed before trying again."""


class UnitsUnavailable(BusinessRejection):
    """One or more units raced away to another buyer."""

    def __init__(self, unit_ids: list[str]):
        self.unit_ids = list(unit_ids)
        super().__init__(f"Seats no longer available: {', '.join(self.unit_ids)}")


class HoldRequestRejected(BusinessRejection):
    """The hold request failed remote validation."""

    def __init__(self, reason: str, code: str | None = None):
        self.reason = reason
        self.code = code
        super().__init__(f"Hold request rejected: {reason}")


class HoldMismatch(BusinessRejection):
    """
    A granted hold does not cover exactly the requested units.
    `hold` is the hold the remote side did grant, when one came back;
    it stays live until its own expiry.
    """

    def __init__(self, requested: list[str], granted: list[str], hold=None):
        self.requested = list(requested)
        self.granted = list(granted)
        self.hold = hold
        super().__init__(
            f"Hold covers {self.granted}, requested {self.requested}"
        )


class HoldExpired(BusinessRejection):
    """The hold expired before payment completed."""

    def __init__(self, hold_id: str):
        self.hold_id = hold_id
        super().__init__(f"Hold {hold_id} has expired, please reselect seats")


# -----------------------------
# Payment and confirmation
# -----------------------------
class PaymentNotCompleted(BookingWorkflowError):
    """The user dismissed the checkout or the gateway reported an error."""

    def __init__(self, attempt_id: str, status: str, reason: str | None = None):
        self.attempt_id = attempt_id
        self.status = status
        self.reason = reason
        message = f"Payment attempt {attempt_id} ended as {status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ConfirmationFailed(BookingWorkflowError):
    """The confirmation endpoint did not produce a booking record."""

    EXPIRY_CODES = frozenset({"HOLD_EXPIRED"})

    def __init__(self, reason: str, code: str | None = None, retryable: bool = False):
        self.reason = reason
        self.code = code
        self.retryable = retryable
        super().__init__(f"Confirmation failed: {reason}")

    @property
    def is_expiry(self) -> bool:
        return self.code in self.EXPIRY_CODES


class ConfirmationAmbiguous(BookingWorkflowError):
    """
    Payment succeeded but no booking record could be obtained.
    Funds may be captured; confirmation must be retried with the
    identical (hold_id, payment_id) pair, never restarted.
    """

    def __init__(self, hold_id: str, payment_id: str, reason: str, retryable: bool):
        self.hold_id = hold_id
        self.payment_id = payment_id
        self.reason = reason
        self.retryable = retryable
        super().__init__(
            f"Payment {payment_id} captured but booking for hold {hold_id} "
            f"is unconfirmed: {reason}"
        )


# -----------------------------
# Booking API (server side)
# -----------------------------
class BookingRequestError(BookingWorkflowError):
    """
    Raised by the booking API service. Carries the wire error code
    and the HTTP status the route should answer with.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        data: dict | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.data = data
        super().__init__(f"{code}: {message}")
