"""Ledger error taxonomy.

Every error carries a stable machine-readable ``kind``, a human message,
whether a caller may retry as-is, and enough context (entity id or code,
offending field, current state) to decide what to do next.
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for all ledger domain errors."""

    kind: str = "LedgerError"
    retryable: bool = False

    def __init__(self, message: str, *, retryable: Optional[bool] = None, **context: Any):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable
        self.context: Dict[str, Any] = {
            key: value for key, value in context.items() if value is not None
        }

    @property
    def field(self) -> Optional[str]:
        return self.context.get("field")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
            "context": {key: str(value) for key, value in self.context.items()},
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, {self.context!r})"


class ValidationError(LedgerError):
    """Malformed or constraint-violating input."""
    kind = "ValidationError"


class InvalidAmountError(ValidationError):
    """Non-positive amount or overpayment."""
    kind = "InvalidAmountError"


class TemplateError(ValidationError):
    """A template entry violates the single-create rules."""
    kind = "TemplateError"


class ConflictError(LedgerError):
    """Concurrent-mutation or integrity conflict; re-read and retry."""
    kind = "ConflictError"
    retryable = True


class NotFoundError(LedgerError):
    """Missing reference."""
    kind = "NotFoundError"


class UnbalancedEntryError(LedgerError):
    kind = "UnbalancedEntryError"


class AlreadyPostedError(LedgerError):
    kind = "AlreadyPostedError"


class AlreadyReversedError(LedgerError):
    kind = "AlreadyReversedError"


class CycleError(LedgerError):
    kind = "CycleError"


class NotPostableStateError(LedgerError):
    kind = "NotPostableStateError"
