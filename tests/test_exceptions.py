"""
Unit tests for the unified exception hierarchy.

Tests exception creation, attributes, string representations, and error context.
"""

import pytest

from exceptions import (
    AggregationError,
    BudgetTrackerError,
    ConfigError,
    DatabaseError,
    ReportError,
    ValidationError,
)


class TestBudgetTrackerError:
    """Test base BudgetTrackerError class."""

    def test_basic_exception_creation(self):
        """Test creating a basic BudgetTrackerError."""
        error = BudgetTrackerError("Test error message")
        assert str(error) == "Test error message"
        assert error.message == "Test error message"
        assert error.details == {}
        assert error.original_error is None

    def test_exception_with_details(self):
        """Test creating exception with details dictionary."""
        error = BudgetTrackerError("Test error", details={"month": 13, "field": "window"})
        assert error.details == {"month": 13, "field": "window"}
        assert str(error) == "Test error (month=13, field=window)"

    def test_exception_with_original_error(self):
        """Test creating exception with original error chaining."""
        original = OSError("disk full")
        error = DatabaseError("Write failed", original_error=original)
        assert error.original_error is original


class TestSubclasses:
    """Test the exception subclasses."""

    @pytest.mark.parametrize("cls", [ConfigError, DatabaseError, ValidationError, AggregationError, ReportError])
    def test_subclasses_share_base(self, cls):
        with pytest.raises(BudgetTrackerError):
            raise cls("boom")

    def test_validation_error_is_value_error(self):
        assert issubclass(ValidationError, ValueError)
        with pytest.raises(ValueError):
            raise ValidationError("bad month", details={"month": 0})
