# matrix_comp/errors.py
"""
Error kinds raised by the compensation engine.
Each carries enough detail to render a precise message to the member.
"""
from decimal import Decimal


def formatMoney(amount) -> str:
    return f"${Decimal(amount):,.2f}"


class MatrixCompError(Exception):
    """Base class for compensation engine errors."""
    pass


class NotFound(MatrixCompError):
    """Unknown member or matrix node."""

    def __init__(self, entity: str, identifier):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")


class AlreadyPlaced(MatrixCompError):
    """Placement attempted twice for one member."""

    def __init__(self, memberId: int):
        self.memberId = memberId
        super().__init__(f"Member {memberId} is already placed in the matrix")


class Conflict(MatrixCompError):
    """Concurrent-write retry budget exhausted."""

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"{operation} failed after {attempts} attempts due to concurrent updates")


class InsufficientBalance(MatrixCompError):

    def __init__(self, requested: Decimal, available: Decimal):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested amount ({formatMoney(requested)}) exceeds available balance ({formatMoney(available)})"
        )


class BelowMinimumPayout(MatrixCompError):

    def __init__(self, amount: Decimal, minimum: Decimal):
        self.amount = amount
        self.minimum = minimum
        self.shortfall = Decimal(minimum) - Decimal(amount)
        super().__init__(
            f"{formatMoney(self.shortfall)} below minimum payout of {formatMoney(minimum)}"
        )


class PendingRequestExists(MatrixCompError):

    def __init__(self, memberId: int, requestId: int = None):
        self.memberId = memberId
        self.requestId = requestId
        super().__init__(
            "You already have a pending payout request. Please wait for it to be processed."
        )


class InvalidPayoutMethod(MatrixCompError):

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Invalid payout method '{method}'. Use 'cashapp' or 'paypal'")


class InvalidConfiguration(MatrixCompError):
    """Malformed compensation settings snapshot."""
    pass


class InvalidStatusTransition(MatrixCompError):

    def __init__(self, entity: str, identifier, current: str, target: str):
        self.entity = entity
        self.identifier = identifier
        self.current = current
        self.target = target
        super().__init__(f"{entity} {identifier}: cannot move from '{current}' to '{target}'")


class SettlementMismatch(MatrixCompError):
    """Commissions chosen for a paid payout do not add up to the requested amount."""

    def __init__(self, requestId: int, requested: Decimal, settled: Decimal):
        self.requestId = requestId
        self.requested = requested
        self.settled = settled
        super().__init__(
            f"Payout request {requestId}: pending commissions cover {formatMoney(settled)} "
            f"of the requested {formatMoney(requested)}"
        )


class DuplicateEvent(MatrixCompError):
    """Qualifying event already processed. Handled as a successful no-op."""

    def __init__(self, sourceEventId: str):
        self.sourceEventId = sourceEventId
        super().__init__(f"Event {sourceEventId} already processed")
