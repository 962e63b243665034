"""
Tests for the SQLAlchemy storage boundary using an in-memory database.
"""

import pytest

from database_ops import (
    DatabaseManager,
    ExpenseModel,
    FixedExpenseOverrideModel,
    SettingModel,
)
from exceptions import DatabaseError, ValidationError
from records import ExpenseKind, IncomeKey


class TestExpenses:
    """Tests for ad-hoc expense storage."""

    def test_add_and_read_expenses(self, db_manager):
        stored = db_manager.add_expense("  Groceries ", 5000, 2025, kind="monthly", month=1)
        db_manager.add_expense("Insurance", 8000, 2025)
        db_manager.add_expense("Old", 100, 2024, kind="monthly", month=1)

        expenses = db_manager.get_expenses(2025)

        assert stored.id.isdigit()
        assert stored.name == "Groceries"
        assert [e.name for e in expenses] == ["Groceries", "Insurance"]
        assert expenses[1].kind is ExpenseKind.YEARLY

    def test_filters(self, db_manager):
        db_manager.add_expense("Jan", 1, 2025, kind="monthly", month=1)
        db_manager.add_expense("Feb", 2, 2025, kind="monthly", month=2)
        db_manager.add_expense("Year", 3, 2025)

        assert [e.name for e in db_manager.get_expenses(2025, kind="monthly")] == ["Jan", "Feb"]
        assert [e.name for e in db_manager.get_expenses(2025, month=2)] == ["Feb"]
        assert [e.name for e in db_manager.get_expenses(2025, kind="yearly")] == ["Year"]

    def test_unknown_kind_filter(self, db_manager):
        with pytest.raises(ValidationError) as exc:
            db_manager.get_expenses(2025, kind="weekly")

        assert exc.value.details == {"kind": "weekly"}

    def test_invalid_expense_not_stored(self, db_manager):
        with pytest.raises(ValidationError):
            db_manager.add_expense("Bad", -5, 2025, kind="monthly", month=1)

        assert db_manager.get_expenses(2025) == []

    def test_delete_expense(self, db_manager):
        stored = db_manager.add_expense("Gone", 10, 2025)

        assert db_manager.delete_expense(int(stored.id))
        assert not db_manager.delete_expense(int(stored.id))
        assert db_manager.get_expenses(2025) == []

    def test_invalid_rows_skipped(self, db_manager, caplog):
        session = db_manager.get_session()
        try:
            session.add(ExpenseModel(user_id="tester", name="Broken", amount=-1, kind="monthly", month=1, year=2025))
            session.commit()
        finally:
            session.close()
        db_manager.add_expense("Fine", 10, 2025, kind="monthly", month=1)

        expenses = db_manager.get_expenses(2025)

        assert [e.name for e in expenses] == ["Fine"]
        assert "Skipping invalid expense row" in caplog.text

    def test_records_scoped_to_user(self, db_manager):
        db_manager.add_expense("Mine", 10, 2025)
        other = DatabaseManager("sqlite:///:memory:", user_id="someone-else")
        other.engine = db_manager.engine
        other.SessionLocal = db_manager.SessionLocal

        assert other.get_expenses(2025) == []


class TestFixedExpenses:
    """Tests for fixed expenses and their overrides."""

    def test_add_fixed_expense_with_overrides(self, db_manager):
        rent = db_manager.add_fixed_expense("Rent", 15000, [1, 2, 3], 2025)
        db_manager.upsert_fixed_expense_override(int(rent.id), 1, 2025, 18000)

        definitions = db_manager.get_fixed_expenses(2025)

        assert len(definitions) == 1
        assert definitions[0].applicable_months == (1, 2, 3)
        assert [(o.month, o.amount) for o in definitions[0].overrides] == [(1, 18000.0)]

    def test_upsert_updates_existing_override(self, db_manager):
        rent = db_manager.add_fixed_expense("Rent", 15000, [1], 2025)
        db_manager.upsert_fixed_expense_override(int(rent.id), 1, 2025, 18000)
        db_manager.upsert_fixed_expense_override(int(rent.id), 1, 2025, 0)

        overrides = db_manager.get_fixed_expenses(2025)[0].overrides

        assert [(o.month, o.amount) for o in overrides] == [(1, 0.0)]

    def test_override_for_missing_fixed_expense(self, db_manager):
        with pytest.raises(DatabaseError):
            db_manager.upsert_fixed_expense_override(999, 1, 2025, 10)

    def test_delete_override_reverts_to_base(self, db_manager):
        rent = db_manager.add_fixed_expense("Rent", 15000, [1], 2025)
        db_manager.upsert_fixed_expense_override(int(rent.id), 1, 2025, 18000)

        assert db_manager.delete_fixed_expense_override(int(rent.id), 1, 2025)
        assert db_manager.get_fixed_expenses(2025)[0].overrides == ()

    def test_delete_fixed_expense_removes_overrides(self, db_manager):
        rent = db_manager.add_fixed_expense("Rent", 15000, [1], 2025)
        db_manager.upsert_fixed_expense_override(int(rent.id), 1, 2025, 18000)

        assert db_manager.delete_fixed_expense(int(rent.id))
        assert db_manager.get_fixed_expenses(2025) == []

        session = db_manager.get_session()
        try:
            assert session.query(FixedExpenseOverrideModel).count() == 0
        finally:
            session.close()

    def test_empty_months_allowed(self, db_manager):
        db_manager.add_fixed_expense("Unscheduled", 10, [], 2025)
        assert db_manager.get_fixed_expenses(2025)[0].applicable_months == ()


class TestIncome:
    """Tests for income settings and overrides."""

    def test_set_income_upserts(self, db_manager):
        db_manager.set_income(40000, 2025)
        db_manager.set_income(42000, 2025)

        income = db_manager.get_income_base(2025)

        assert income.value == 42000
        assert income.key is IncomeKey.MONTHLY

    def test_monthly_key_preferred_over_yearly(self, db_manager):
        db_manager.set_income(120000, 2025, key="yearlyIncome")
        assert db_manager.get_income_base(2025).monthly_amount == 10000

        db_manager.set_income(9000, 2025)
        assert db_manager.get_income_base(2025).monthly_amount == 9000

    def test_missing_income(self, db_manager):
        assert db_manager.get_income_base(2025) is None

    def test_invalid_setting_ignored(self, db_manager):
        session = db_manager.get_session()
        try:
            session.add(SettingModel(user_id="tester", key="monthlyIncome", year=2025, value=-10))
            session.commit()
        finally:
            session.close()

        assert db_manager.get_income_base(2025) is None

    def test_income_overrides(self, db_manager):
        db_manager.upsert_income_override(3, 2025, 45000)
        db_manager.upsert_income_override(3, 2025, 46000)
        db_manager.upsert_income_override(4, 2025, 0)

        overrides = {o.month: o.amount for o in db_manager.get_income_overrides(2025)}
        assert overrides == {3: 46000.0, 4: 0.0}

        assert db_manager.delete_income_override(4, 2025)
        assert not db_manager.delete_income_override(4, 2025)


class TestSnapshot:
    """Tests for load_snapshot."""

    def test_load_snapshot(self, db_manager):
        db_manager.set_income(40000, 2025)
        db_manager.upsert_income_override(3, 2025, 45000)
        db_manager.add_expense("Groceries", 5000, 2025, kind="monthly", month=1)
        db_manager.add_expense("Insurance", 8000, 2025)
        rent = db_manager.add_fixed_expense("Rent", 15000, [1, 2, 3], 2025)
        db_manager.upsert_fixed_expense_override(int(rent.id), 1, 2025, 18000)

        snapshot = db_manager.load_snapshot(2025)

        assert snapshot.year == 2025
        assert snapshot.monthly_income == 40000
        assert len(snapshot.expenses) == 2
        assert len(snapshot.fixed_expenses) == 1
        assert snapshot.fixed_expenses[0].overrides[0].amount == 18000
        assert [o.month for o in snapshot.income_overrides] == [3]

    def test_empty_snapshot(self, db_manager):
        snapshot = db_manager.load_snapshot(2030)

        assert snapshot.expenses == ()
        assert snapshot.income is None

    def test_invalid_year(self, db_manager):
        with pytest.raises(ValidationError):
            db_manager.load_snapshot(1900)
