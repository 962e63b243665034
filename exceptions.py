"""
Unified exception hierarchy for the budget tracker.

BudgetTrackerError is the base for every error raised by the project so
callers (CLI handlers, report builders) can catch one type and still get a
consistent message with optional context.
"""

from typing import Optional


class BudgetTrackerError(Exception):
    """
    Base exception class for all budget tracker errors.

    Attributes:
        message: Human-readable error message
        details: Optional dictionary with additional error context
        original_error: Optional original exception that caused this error
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        msg = self.message
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            msg = f"{msg} ({detail_str})"
        return msg


class ConfigError(BudgetTrackerError):
    """Raised when configuration loading or validation fails."""
    pass


class DatabaseError(BudgetTrackerError):
    """Raised when database operations fail."""
    pass


class ValidationError(BudgetTrackerError, ValueError):
    """
    Raised when a record or engine argument is structurally invalid.

    Covers non-finite or non-numeric amounts, months outside 1-12 and
    malformed window elements. Also a ValueError so generic callers can
    treat it as bad input.
    """
    pass


class AggregationError(BudgetTrackerError):
    """Raised when an aggregation request cannot be satisfied."""
    pass


class ReportError(BudgetTrackerError):
    """Raised when report generation or export fails."""
    pass
