# Overview: Typed failure taxonomy shared by the ledgers, the fiscal client and the invoice workflow.

from __future__ import annotations


class InvoicingError(Exception):
    """
    Base class for every failure the invoicing core reports.

    `kind` is a stable tag for callers that dispatch on the failure type;
    `details` always names the offending entity (sku_id, account_id,
    invoice_id, ...).
    """
    kind = "invoicing_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class ValidationError(InvoicingError):
    """Malformed or missing input, detected before any mutation."""
    kind = "validation_error"


class SkuNotFound(InvoicingError):
    kind = "sku_not_found"


class InsufficientStock(InvoicingError):
    kind = "insufficient_stock"


class AccountNotFound(InvoicingError):
    kind = "account_not_found"


class CreditLimitExceeded(InvoicingError):
    kind = "credit_limit_exceeded"


class InvalidState(InvoicingError):
    """Operation not valid for the invoice's current lifecycle state."""
    kind = "invalid_state"


class ConcurrencyConflict(InvoicingError):
    """A row kept changing under concurrent writers until the retries ran out."""
    kind = "concurrency_conflict"


class AuthorityError(InvoicingError):
    """
    Outcome of a failed exchange with the fiscal authority.

    Two variants only: AuthorityUnreachable (transient) and
    AuthorityRejected (explicit refusal).
    """
    kind = "authority_error"
    retryable = False


class AuthorityUnreachable(AuthorityError):
    kind = "authority_unreachable"
    retryable = True


class AuthorityRejected(AuthorityError):
    kind = "authority_rejected"
    retryable = False

    def __init__(self, message: str, details: dict | None = None, *, code: str | None = None):
        super().__init__(message, details)
        self.code = code
        if code is not None:
            self.details.setdefault("code", code)

    @property
    def reason(self) -> str:
        return self.message


class PartialCommitInconsistency(InvoicingError):
    """
    An authorized document whose local stock/ledger effects could not be
    applied (or reversed). The invoice keeps its fiscal status; the cause is
    kept for the operator repair path.
    """
    kind = "partial_commit_inconsistency"

    def __init__(self, message: str, cause: InvoicingError, details: dict | None = None):
        super().__init__(message, details)
        self.cause = cause
        self.details.setdefault("cause", cause.to_dict())
