"""Domain exceptions for the visa escrow workflow.

These exceptions are framework-agnostic and represent business rule violations.
Each one carries a stable ``code`` and an ``ErrorKind`` so the API layer can
translate it to an HTTP response without leaking internal detail.
"""

from visa_escrow.domain.enums import ErrorKind


class EscrowWorkflowError(Exception):
    """Base exception for all domain errors."""

    kind: ErrorKind = ErrorKind.VALIDATION
    retriable: bool = False

    def __init__(self, message: str, code: str = "ESCROW_WORKFLOW_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Validation Errors ---


class InvalidAmountError(EscrowWorkflowError):
    """Raised for negative, non-integral or over-precise amounts."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_AMOUNT")


class CurrencyMismatchError(EscrowWorkflowError):
    def __init__(self, left: str, right: str) -> None:
        super().__init__(
            message=f"Currency mismatch: {left} vs {right}",
            code="CURRENCY_MISMATCH",
        )


class InvalidPercentageError(EscrowWorkflowError):
    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_PERCENTAGE")


class MilestoneSumMismatchError(EscrowWorkflowError):
    """Raised when milestone amounts do not add up to the funded total."""

    def __init__(self, milestone_total: int, funded_total: int) -> None:
        super().__init__(
            message=(
                f"Milestone amounts sum to {milestone_total} but the funded "
                f"total is {funded_total} (minor units)"
            ),
            code="MILESTONE_SUM_MISMATCH",
        )
        self.milestone_total = milestone_total
        self.funded_total = funded_total


class MilestoneIndexError(EscrowWorkflowError):
    """Raised when a milestone index does not exist on the case."""

    def __init__(self, case_id: str, index: int) -> None:
        super().__init__(
            message=f"Case {case_id} has no milestone at index {index}",
            code="MILESTONE_INDEX_INVALID",
        )
        self.index = index


# --- Not Found Errors ---


class NotFoundError(EscrowWorkflowError):
    kind = ErrorKind.NOT_FOUND


class CaseNotFoundError(NotFoundError):
    def __init__(self, case_id: str) -> None:
        super().__init__(message=f"Case not found: {case_id}", code="CASE_NOT_FOUND")
        self.case_id = case_id


class EscrowNotFoundError(NotFoundError):
    def __init__(self, escrow_id: str) -> None:
        super().__init__(message=f"Escrow not found: {escrow_id}", code="ESCROW_NOT_FOUND")
        self.escrow_id = escrow_id


class ProposalNotFoundError(NotFoundError):
    def __init__(self, proposal_id: str) -> None:
        super().__init__(
            message=f"Proposal not found: {proposal_id}",
            code="PROPOSAL_NOT_FOUND",
        )
        self.proposal_id = proposal_id


# --- Authorization Errors ---


class NotAuthorizedError(EscrowWorkflowError):
    """Raised when the acting identity lacks the role an operation requires."""

    kind = ErrorKind.AUTHORIZATION

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="NOT_AUTHORIZED")


class NotAuthenticatedError(NotAuthorizedError):
    """Raised when a request carries no valid bearer token."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.code = "NOT_AUTHENTICATED"


# --- State Conflict Errors ---


class StateConflictError(EscrowWorkflowError):
    kind = ErrorKind.STATE_CONFLICT


class InvalidStateTransitionError(StateConflictError):
    """Raised when an escrow or case transition is not allowed.

    Example: fully_released -> on_hold (terminal states accept nothing).
    """

    def __init__(self, entity: str, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid {entity} transition '{attempted}' from state {current_state}",
            code="INVALID_STATE_TRANSITION",
        )
        self.entity = entity
        self.current_state = current_state
        self.attempted = attempted


class InvalidMilestoneStateError(InvalidStateTransitionError):
    """Raised when a milestone transition is not allowed from its current state."""

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__("milestone", current_state, attempted)
        self.code = "INVALID_MILESTONE_STATE"


class AlreadyOnHoldError(StateConflictError):
    """Only one active hold (and one open dispute) is permitted per escrow."""

    def __init__(self, escrow_id: str) -> None:
        super().__init__(
            message=f"Escrow {escrow_id} is already on hold",
            code="ALREADY_ON_HOLD",
        )


class AlreadyFundedError(StateConflictError):
    """Raised when a payment reference or proposal has already been consumed."""

    def __init__(self, reference: str) -> None:
        super().__init__(
            message=f"Escrow already funded for: {reference}",
            code="ALREADY_FUNDED",
        )
        self.reference = reference


class ConcurrentModificationError(StateConflictError):
    """Raised when another request changed the case first. Safe to retry."""

    retriable = True

    def __init__(self, case_id: str) -> None:
        super().__init__(
            message=f"Case {case_id} was modified concurrently, retry the request",
            code="CONCURRENT_MODIFICATION",
        )
        self.case_id = case_id


# --- Funds Errors ---


class FundsError(EscrowWorkflowError):
    kind = ErrorKind.FUNDS


class InsufficientFundsError(FundsError):
    """Raised when a subtraction would produce a negative balance."""

    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            message=f"Insufficient funds: required {required}, available {available} (minor units)",
            code="INSUFFICIENT_FUNDS",
        )
        self.required = required
        self.available = available


class ExceedsAvailableFundsError(FundsError):
    """Raised when a release or hold asks for more than the available balance."""

    def __init__(self, requested: int, available: int) -> None:
        super().__init__(
            message=(
                f"Requested {requested} exceeds available balance {available} (minor units)"
            ),
            code="EXCEEDS_AVAILABLE_FUNDS",
        )
        self.requested = requested
        self.available = available
