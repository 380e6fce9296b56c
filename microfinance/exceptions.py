"""Exception hierarchy for the loan engine."""


class LendingError(Exception):
    """Base exception for all loan engine errors."""


class RecordNotFound(LendingError):
    """Raised when a referenced loan, term, payment or loan type does not exist."""


class InvalidTermLength(LendingError):
    """Raised when the chosen number of installments is not offered by the loan type."""


class InvalidScheduleParameters(LendingError):
    """Raised when a schedule cannot be built from the given principal, rate and months."""


class AmountOutOfRange(LendingError):
    """Raised when a principal falls outside the loan type's min/max amounts."""


class TermAlreadySettled(LendingError):
    """Raised when a payment targets a term that is already PAID."""


class OverpaymentNotAllowed(LendingError):
    """Raised when a payment exceeds the term's amount due including penalty."""


class InvalidPaymentAmount(LendingError):
    """Raised when a payment amount is zero or negative."""


class PaymentNotPending(LendingError):
    """Raised when approving or rejecting a payment that was already processed."""


class ConcurrentModification(LendingError):
    """Raised when a record changed between read and write. Safe to retry."""

    def __init__(self, table: str, record_id: str, expected_version: int, actual_version=None):
        self.table = table
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"{table}/{record_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class GatewayUnavailable(LendingError):
    """Raised when the SMS gateway is not configured or inactive."""
