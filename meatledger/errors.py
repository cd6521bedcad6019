"""
Base exceptions for Meat Ledger.

Every error raised by the engine carries a human-readable message and,
when the store provided one, an error code. Callers show ``user_message``
(a generic reconnect/retry prompt) and keep ``message`` for the logs.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from meatledger.engine.pipeline import CompletionLog


RETRY_PROMPT = "Cloud connection error. Please check your connection and retry."


class LedgerError(Exception):
    """Base exception for all ledger operations."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        # Set by OperationPipeline when raised from a multi-step operation
        self.completion_log: Optional["CompletionLog"] = None

    @property
    def user_message(self) -> str:
        return RETRY_PROMPT

    def __str__(self) -> str:
        if self.code:
            return f"{self.message} (code: {self.code})"
        return self.message


class ValidationError(LedgerError):
    """
    Input rejected before any store call.

    No state has changed when this is raised.
    """

    def __init__(self, message: str, issues: Optional[list] = None):
        super().__init__(message, code="invalid-argument")
        self.issues = issues or []

    @property
    def user_message(self) -> str:
        return self.message
