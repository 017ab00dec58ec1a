"""Service-layer exception hierarchy.

Every error raised by the ledger, generation, payment, identity and feed
services derives from LedgerError and carries an ErrorKind tag. Callers
branch on the kind (or the class), and the HTTP layer maps the kind to a
status code in app.api.errors.
"""

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    """Classification of service errors."""

    VALIDATION = "validation"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    NOT_FOUND = "not_found"
    AUTHENTICATION = "authentication"
    UPSTREAM = "upstream"
    INTERNAL = "internal"


class LedgerError(Exception):
    """Base class for service errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        if kind is not None:
            self.kind = kind
        self.message = message
        super().__init__(message)


class ValidationError(LedgerError):
    """Raised when input is malformed or out of range."""

    kind = ErrorKind.VALIDATION


class InsufficientBalanceError(LedgerError):
    """Raised when an account cannot cover a debit."""

    kind = ErrorKind.INSUFFICIENT_BALANCE

    def __init__(self, account_id: str, required: int, available: Optional[int] = None):
        self.account_id = account_id
        self.required = required
        self.available = available
        if available is None:
            message = f"Insufficient credits: required {required}"
        else:
            message = f"Insufficient credits: required {required}, available {available}"
        super().__init__(message)


class NotFoundError(LedgerError):
    """Raised when a requested resource does not exist or is not owned by the caller."""

    kind = ErrorKind.NOT_FOUND


class AccountNotFoundError(NotFoundError):
    """Raised when an account lookup or credit finds no row."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class SignatureVerificationError(LedgerError):
    """Raised when a webhook signature is missing, malformed or wrong."""

    kind = ErrorKind.AUTHENTICATION


class UpstreamError(LedgerError):
    """Raised when an external dependency fails in a way the caller must see."""

    kind = ErrorKind.UPSTREAM


class RefundFailedError(LedgerError):
    """Raised when a compensating refund could not be applied.

    The account has been debited for work that did not complete; an
    operator has to reconcile it by hand.
    """

    kind = ErrorKind.INTERNAL

    def __init__(self, account_id: str, amount: int, job_id: Optional[str] = None):
        self.account_id = account_id
        self.amount = amount
        self.job_id = job_id
        super().__init__(
            f"Refund of {amount} credits to account {account_id} failed (job {job_id})"
        )
