"""
Unit tests for the aggregation engine.

Validates month and window figures, percent-used clamping, yearly expense
handling, chart series and the whole-year summary.
"""

import math

import pytest

from aggregation import (
    aggregate,
    aggregate_snapshot,
    budget_color_band,
    chart_series,
    clamp_percent,
    merge_thresholds,
    month_figure,
    month_grid,
    months_with_data,
    percent_used,
    percentage_change,
    summarize_snapshot,
    summarize_year,
    yearly_expense_total,
)
from conftest import make_expense, make_fixed
from exceptions import AggregationError, ValidationError
from periods import TimePeriod, build_window
from records import IncomeBase, MonthlyIncomeOverride


class TestAggregate:
    """Tests for aggregate."""

    def test_matches_manual_sum(self, january_dataset):
        expenses, fixed = january_dataset

        result = aggregate([1], expenses, fixed, 40000, [])
        january = result.for_month(1)

        assert january.adhoc_total == 8000
        assert january.fixed_total == 18000
        assert january.total_spent == 26000
        assert january.income == 40000
        assert january.remaining == 14000
        assert result.total_spent == 26000
        assert result.total_income == 40000
        assert result.total_remaining == 14000
        assert january.fixed_items[0].overridden is True

    def test_yearly_expenses_excluded_from_every_window(self):
        expenses = [make_expense(1, 8000, kind="yearly")]

        result = aggregate(range(1, 13), expenses, [], 10000)

        assert result.total_spent == 0
        assert all(figure.total_spent == 0 for figure in result.months)

    def test_yearly_expense_with_month_still_excluded(self):
        expenses = [make_expense(1, 8000, kind="yearly", month=4)]
        assert aggregate([4], expenses, [], 10000).total_spent == 0

    def test_percent_used_is_clamped_but_raw_kept(self):
        expenses = [make_expense(1, 15000, month=6)]

        result = aggregate([6], expenses, [], 10000)

        assert result.percent_used == 100
        assert result.raw_percent_used == pytest.approx(150)
        assert result.is_over_budget
        assert result.percent_remaining == 0
        assert result.months[0].is_over_budget

    def test_window_percent_from_totals(self):
        expenses = [make_expense(1, 9000, month=1), make_expense(2, 1000, month=2)]

        result = aggregate([1, 2], expenses, [], IncomeBase(value=10000, year=2025))

        assert result.raw_percent_used == pytest.approx(50)
        assert result.months[0].raw_percent_used == pytest.approx(90)
        assert result.months[1].raw_percent_used == pytest.approx(10)

    def test_zero_income_gives_zero_percent(self):
        expenses = [make_expense(1, 500, month=3)]

        result = aggregate([3], expenses, [], 0)

        assert result.percent_used == 0
        assert result.raw_percent_used == 0
        assert result.total_remaining == -500
        assert not result.is_over_budget

    def test_income_overrides_apply_per_month(self):
        overrides = [MonthlyIncomeOverride(month=2, year=2025, amount=50000)]

        result = aggregate([1, 2], [], [], 40000, overrides)

        assert [figure.income for figure in result.months] == [40000, 50000]
        assert [figure.income_overridden for figure in result.months] == [False, True]
        assert result.total_income == 90000

    def test_yearly_income_key_is_spread_over_months(self):
        income = IncomeBase(value=120000, year=2025, key="yearlyIncome")
        assert aggregate([5], [], [], income).total_income == pytest.approx(10000)

    def test_no_income_configured(self):
        assert aggregate([1], [], [], None).total_income == 0

    def test_empty_window_yields_zeros(self, january_dataset):
        expenses, fixed = january_dataset

        result = aggregate([], expenses, fixed, 40000)

        assert result.months == ()
        assert result.total_spent == 0
        assert result.total_income == 0
        assert result.total_remaining == 0
        assert result.percent_used == 0

    def test_window_order_and_duplicates(self):
        result = aggregate([3, 1, 3], [], [], 100)
        assert result.month_numbers == [3, 1]

    def test_accepts_aggregation_window(self, january_dataset):
        expenses, fixed = january_dataset
        window = build_window(TimePeriod.PAST_3_MONTHS, reference_month=1)

        result = aggregate(window, expenses, fixed, 40000)

        assert result.month_numbers == [1, 12, 11]
        assert result.total_spent == 26000
        assert result.total_income == 120000

    def test_idempotent(self, january_dataset):
        expenses, fixed = january_dataset
        overrides = [{"month": 1, "amount": 41000}]

        first = aggregate([1, 2, 3], expenses, fixed, 40000, overrides)
        second = aggregate([1, 2, 3], expenses, fixed, 40000, overrides)

        assert first == second

    def test_inputs_not_mutated(self, january_dataset):
        expenses, fixed = january_dataset
        overrides = [{"month": 1, "amount": 41000}]
        before = (list(expenses), list(fixed), [dict(o) for o in overrides])

        aggregate([1], expenses, fixed, 40000, overrides)

        assert (expenses, fixed, overrides) == before

    @pytest.mark.parametrize("window", [[0], [13], [1, "2"], [1.0]])
    def test_invalid_window_elements_raise(self, window):
        with pytest.raises(ValidationError):
            aggregate(window, [], [], 100)

    @pytest.mark.parametrize("income", [math.inf, math.nan, "40000"])
    def test_invalid_income_raises(self, income):
        with pytest.raises(ValidationError):
            aggregate([1], [], [], income)

    def test_for_month_outside_window(self):
        with pytest.raises(AggregationError):
            aggregate([1], [], [], 100).for_month(2)

    def test_aggregate_snapshot(self, snapshot):
        result = aggregate_snapshot([1, 2, 3], snapshot)

        assert [f.total_spent for f in result.months] == [21200, 4200, 16200]
        assert [f.income for f in result.months] == [40000, 40000, 45000]


class TestMonthViews:
    """Tests for single-month and month-grid helpers."""

    def test_month_figure(self, january_dataset):
        expenses, fixed = january_dataset

        figure = month_figure(2, expenses, fixed, 40000)

        assert figure.name == "February"
        assert figure.total_spent == 15000
        assert figure.remaining == 25000

    def test_month_grid_covers_year(self, snapshot):
        grid = month_grid(snapshot.expenses, snapshot.fixed_expenses, snapshot.income, snapshot.income_overrides)

        assert grid.month_numbers == list(range(1, 13))
        assert grid.total_spent == pytest.approx(8000 + 30000 + 14400)

    def test_months_with_data(self, snapshot):
        assert months_with_data(snapshot.expenses, [make_fixed(1, 10, [5, 3])]) == [1, 2, 3, 5]


class TestYearSummary:
    """Tests for summarize_year."""

    def test_summary_combines_all_expense_kinds(self, snapshot):
        summary = summarize_snapshot(snapshot)

        assert summary.total_income == pytest.approx(40000 * 11 + 45000)
        assert summary.monthly_expenses == 8000
        assert summary.yearly_expenses == 8000
        assert summary.fixed_expenses == pytest.approx(44400)
        assert summary.total_expenses == pytest.approx(60400)
        assert summary.net_savings == pytest.approx(485000 - 60400)

    def test_yearly_expense_total(self):
        expenses = [make_expense(1, 8000), make_expense(2, 100, month=1), make_expense(3, 2000)]
        assert yearly_expense_total(expenses) == 10000

    def test_empty_year(self):
        summary = summarize_year([], [], None)
        assert summary.total_income == 0
        assert summary.net_savings == 0


class TestChartSeries:
    """Tests for chart_series and percentage_change."""

    def test_expenses_view_in_chart_order(self, january_dataset):
        expenses, fixed = january_dataset

        points = chart_series(TimePeriod.PAST_3_MONTHS, 2, expenses, fixed, 40000)

        assert [p.month for p in points] == [12, 1, 2]
        assert [p.label for p in points] == ["Dec", "Jan", "Feb"]
        assert [p.value for p in points] == [0, 26000, 15000]

    def test_savings_view_uses_income_overrides(self):
        overrides = [MonthlyIncomeOverride(month=2, year=2025, amount=30000)]
        expenses = [make_expense(1, 5000, month=2)]

        points = chart_series("this-month", 2, expenses, [], 40000, overrides, view="savings")

        assert [p.value for p in points] == [25000]

    def test_entire_year_ascending(self):
        points = chart_series("1Y", 7, [], [], 100)
        assert [p.month for p in points] == list(range(1, 13))

    def test_unknown_view(self):
        with pytest.raises(ValidationError):
            chart_series("1M", 1, [], [], 100, view="income")

    def test_percentage_change(self, january_dataset):
        expenses, fixed = january_dataset
        points = chart_series([1, 2], 2, expenses, fixed, 40000)

        assert percentage_change(points) == pytest.approx((15000 - 26000) / 26000 * 100)

    def test_percentage_change_degenerate(self):
        assert percentage_change([]) == 0
        points = chart_series([1, 2], 2, [], [], 100)
        assert percentage_change(points) == 0


class TestPercentHelpers:
    """Tests for percentage and colour band helpers."""

    def test_percent_used(self):
        assert percent_used(50, 200) == 25
        assert percent_used(50, 0) == 0
        assert percent_used(50, -10) == 0

    def test_clamp_percent(self):
        assert clamp_percent(150) == 100
        assert clamp_percent(-5) == 0
        assert clamp_percent(42.5) == 42.5

    @pytest.mark.parametrize("percent,band", [
        (0, "green"),
        (49.9, "green"),
        (50, "yellow"),
        (69.9, "yellow"),
        (70, "orange"),
        (84.9, "orange"),
        (85, "red"),
        (100, "red"),
    ])
    def test_default_bands(self, percent, band):
        assert budget_color_band(percent) == band

    def test_custom_thresholds(self):
        assert budget_color_band(55, {"yellow": 60}) == "green"

    def test_merge_thresholds(self):
        assert merge_thresholds({"red": 90, "unknown": 1}) == {"yellow": 50.0, "orange": 70.0, "red": 90.0}

    def test_merge_thresholds_rejects_bad_values(self):
        with pytest.raises(ValidationError):
            merge_thresholds({"yellow": "high"})
        with pytest.raises(ValidationError):
            merge_thresholds({"yellow": 90, "red": 80})
