import os

import pytest

from database_ops import DatabaseManager
from records import (
    BudgetSnapshot,
    ExpenseRecord,
    FixedExpenseDefinition,
    FixedExpenseOverride,
    IncomeBase,
    MonthlyIncomeOverride,
)

# Keep tests independent of any database configured in the developer's shell.
os.environ.pop("BUDGET_DB_CONNECTION_STRING", None)


def make_expense(expense_id, amount, month=None, kind=None, name=None, year=2025):
    """Build an ExpenseRecord; monthly when a month is given, yearly otherwise."""
    return ExpenseRecord(
        id=str(expense_id),
        name=name or f"Expense {expense_id}",
        amount=amount,
        year=year,
        kind=kind or ("monthly" if month is not None else "yearly"),
        month=month,
    )


def make_fixed(definition_id, amount, months, overrides=(), name=None, year=2025):
    """Build a FixedExpenseDefinition with overrides given as (month, amount) pairs."""
    return FixedExpenseDefinition(
        id=str(definition_id),
        name=name or f"Fixed {definition_id}",
        amount=amount,
        applicable_months=tuple(months),
        year=year,
        overrides=tuple(
            FixedExpenseOverride(fixed_expense_id=str(definition_id), month=m, year=year, amount=a)
            for m, a in overrides
        ),
    )


@pytest.fixture
def january_dataset():
    """Two ad-hoc January expenses plus rent overridden to 18000 in January."""
    expenses = [
        make_expense(1, 5000, month=1),
        make_expense(2, 3000, month=1),
    ]
    fixed = [make_fixed(10, 15000, [1, 2, 3], overrides=[(1, 18000)], name="Rent")]
    return expenses, fixed


@pytest.fixture
def snapshot():
    """A year of records covering every record kind."""
    return BudgetSnapshot(
        year=2025,
        expenses=(
            make_expense(1, 5000, month=1, name="Groceries"),
            make_expense(2, 3000, month=2, name="Fuel"),
            make_expense(3, 8000, name="Insurance"),
        ),
        fixed_expenses=(
            make_fixed(10, 15000, [1, 2, 3], overrides=[(2, 0)], name="Rent"),
            make_fixed(11, 1200, range(1, 13), name="Internet"),
        ),
        income=IncomeBase(value=40000, year=2025),
        income_overrides=(MonthlyIncomeOverride(month=3, year=2025, amount=45000),),
    )


@pytest.fixture
def db_manager():
    """Provide an in-memory DatabaseManager with tables created."""
    manager = DatabaseManager("sqlite:///:memory:", user_id="tester")
    manager.create_tables()
    try:
        yield manager
    finally:
        manager.close()
