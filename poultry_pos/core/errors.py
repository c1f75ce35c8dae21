"""
Error taxonomy and the boundary translator that turns exceptions into
user-facing messages.

- Validation problems are returned as message lists, not raised.
- PreconditionError aborts an operation before anything is written.
- Infrastructure errors (PyMongo) are logged with details and surfaced
  through ErrorHandler.user_message().
"""

import logging
import uuid
from typing import List, Optional

from pydantic import ValidationError
from pymongo.errors import (
    AutoReconnect,
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    NetworkTimeout,
    OperationFailure,
    PyMongoError,
    ServerSelectionTimeoutError,
    WriteConcernError,
)

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for errors raised by the ledger core."""


class PreconditionError(LedgerError):
    """Operation refused before any write (no customer, zero debt, ...)."""


class NotFoundError(PreconditionError):
    pass


class ConcurrentBalanceChangeError(LedgerError):
    """A customer's stored balance no longer matches the snapshot being settled."""

    def __init__(self, customer_id, expected, actual):
        self.customer_id = customer_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Balance for customer {customer_id} changed from {expected} to {actual}"
        )


class StaleInvoiceError(LedgerError):
    """An invoice was rewritten by another edit after it was read."""

    def __init__(self, invoice_number: str):
        self.invoice_number = invoice_number
        super().__init__(f"Invoice {invoice_number} was changed by another edit")


class CustomerValidationError(LedgerError):
    """Customer data failed structural or uniqueness checks."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


def is_retryable(exc: BaseException) -> bool:
    """Transient database errors that are safe to retry outside a transaction."""
    if isinstance(exc, (AutoReconnect, NetworkTimeout, ExecutionTimeout)):
        return True
    if isinstance(exc, PyMongoError) and exc.has_error_label("TransientTransactionError"):
        return True
    return False


class ErrorHandler:
    """Translates exceptions into messages that are safe to show to a cashier."""

    GENERIC_MESSAGE = "An unexpected error occurred. Please try again later."

    def user_message(self, exc: BaseException) -> str:
        if isinstance(exc, CustomerValidationError):
            return exc.errors[0] if exc.errors else "Invalid customer data."
        if isinstance(exc, ConcurrentBalanceChangeError):
            return "The customer's balance changed while the operation was running. Reload and retry."
        if isinstance(exc, StaleInvoiceError):
            return "The invoice was changed by someone else. Reload it and try again."
        if isinstance(exc, PreconditionError):
            return str(exc)
        if isinstance(exc, DuplicateKeyError):
            return "A record with the same unique value already exists."
        if isinstance(exc, (NetworkTimeout, ExecutionTimeout, TimeoutError)):
            return "The database did not respond in time. Please try again."
        if isinstance(exc, (ServerSelectionTimeoutError, ConnectionFailure)):
            return "Cannot reach the database. Check the connection and try again."
        if isinstance(exc, WriteConcernError):
            return "The change could not be confirmed by the database."
        if isinstance(exc, OperationFailure):
            return "The database rejected the operation."
        if isinstance(exc, (ValidationError, ValueError)):
            return "Some of the entered data is invalid. Check the values and try again."
        return self.GENERIC_MESSAGE

    def handle(self, exc: BaseException, context: str = "") -> str:
        """Log the full exception under a correlation id and return the user message."""
        error_id = uuid.uuid4().hex[:8]
        logger.error(
            "Error %s in %s: %s - %s (retryable=%s)",
            error_id,
            context or "operation",
            type(exc).__name__,
            exc,
            is_retryable(exc),
            exc_info=exc,
        )
        return self.user_message(exc)


error_handler = ErrorHandler()


def describe(exc: Optional[BaseException]) -> Optional[str]:
    if exc is None:
        return None
    return f"{type(exc).__name__}: {exc}"
