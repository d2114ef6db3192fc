"""Domain exceptions for the contribution ledger.

Every error carries a short machine-readable ``code`` so the API layer can
translate it into a response without inspecting messages.
"""


class ChamaError(Exception):
    """Base application error."""

    code = "chama_error"

    def __init__(self, message: str, code: str | None = None):
        """Initialize error."""
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class ValidationError(ChamaError):
    """Malformed or missing input; rejected before any storage access."""

    code = "validation_error"


class NotFoundError(ChamaError):
    """Referenced member, cycle, type, contribution or payout does not exist."""

    code = "not_found"


class NoActiveCycleError(ChamaError):
    """Payment attempted while the chama has no active cycle."""

    code = "no_active_cycle"


class InvalidTransitionError(ChamaError):
    """Requested lifecycle transition is not allowed from the current state."""

    code = "invalid_transition"


class DuplicateError(ChamaError):
    """A uniqueness rule (type name, payout per cycle) would be violated."""

    code = "duplicate"


class InsufficientFundsError(ChamaError):
    """Chama funds cannot cover the requested payout."""

    code = "insufficient_funds"


class ConcurrencyConflictError(ChamaError):
    """A concurrent writer won the race; the whole operation may be retried."""

    code = "concurrency_conflict"


class StorageError(ChamaError):
    """Underlying persistence failure; the in-flight transaction was rolled back."""

    code = "storage_error"


class LedgerInvariantError(ChamaError):
    """Money conservation check failed; the transaction is aborted."""

    code = "ledger_invariant"


__all__ = [
    "ChamaError",
    "ValidationError",
    "NotFoundError",
    "NoActiveCycleError",
    "InvalidTransitionError",
    "DuplicateError",
    "InsufficientFundsError",
    "ConcurrencyConflictError",
    "StorageError",
    "LedgerInvariantError",
]
