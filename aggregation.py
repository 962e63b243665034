"""
Monthly financial aggregation.

Computes spent / income / remaining figures for a window of months from
ad-hoc expenses, fixed expense definitions and income with overrides.
Every view (window totals, month grid, chart series, year overview,
exports) goes through these functions so they agree on the numbers.

All functions are pure: inputs are never mutated and identical inputs
produce identical results.
"""

import calendar
import logging
import math
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from exceptions import AggregationError, ValidationError
from fixed_expenses import FixedExpenseItem, expand_for_month, fixed_total_for_year
from overrides import OverrideSource, index_overrides
from periods import AggregationWindow, PeriodSpec, chart_months_for_period, normalize_months
from records import (
    BudgetSnapshot,
    ExpenseKind,
    ExpenseRecord,
    FixedExpenseDefinition,
    IncomeBase,
)

logger = logging.getLogger(__name__)

# Lower bounds (percent used) of each colour band above green.
DEFAULT_THRESHOLDS: Dict[str, float] = {
    "yellow": 50.0,
    "orange": 70.0,
    "red": 85.0,
}

CHART_VIEWS = ("expenses", "savings")

IncomeInput = Union[IncomeBase, float, int, None]
WindowInput = Union[AggregationWindow, Iterable[int]]


def percent_used(spent: float, income: float) -> float:
    """
    Raw share of income spent, in percent.

    Returns 0 when income is not positive. The value is not clamped, so
    anything above 100 means over budget.
    """
    if income <= 0:
        return 0.0
    return spent / income * 100.0


def clamp_percent(percent: float) -> float:
    """Clamp a percentage into [0, 100] for display."""
    return min(100.0, max(0.0, percent))


def budget_color_band(percent: float, thresholds: Optional[Mapping[str, float]] = None) -> str:
    """
    Pick the colour band for a percent-used value.

    Args:
        percent: Percent of income used
        thresholds: Optional overrides for the band lower bounds

    Returns:
        One of "green", "yellow", "orange", "red"
    """
    bounds = dict(DEFAULT_THRESHOLDS)
    if thresholds:
        bounds.update(thresholds)
    if percent < bounds["yellow"]:
        return "green"
    if percent < bounds["orange"]:
        return "yellow"
    if percent < bounds["red"]:
        return "orange"
    return "red"


@dataclass(frozen=True)
class MonthFigure:
    """
    Aggregated figures for a single month.

    Attributes:
        month: Month number (1-12)
        adhoc_total: Sum of monthly ad-hoc expenses
        fixed_total: Sum of fixed expenses after overrides
        total_spent: adhoc_total + fixed_total
        income: Income after override resolution
        remaining: income - total_spent
        raw_percent_used: Unclamped percent of income spent
        income_overridden: True when an income override applied
        fixed_items: Fixed expenses that make up fixed_total
    """
    month: int
    adhoc_total: float
    fixed_total: float
    total_spent: float
    income: float
    remaining: float
    raw_percent_used: float
    income_overridden: bool = False
    fixed_items: Tuple[FixedExpenseItem, ...] = field(default_factory=tuple)

    @property
    def name(self) -> str:
        return calendar.month_name[self.month]

    @property
    def percent_used(self) -> float:
        """Percent used clamped to [0, 100]."""
        return clamp_percent(self.raw_percent_used)

    @property
    def percent_remaining(self) -> float:
        return max(0.0, 100.0 - self.percent_used)

    @property
    def is_over_budget(self) -> bool:
        return self.raw_percent_used > 100.0


@dataclass(frozen=True)
class WindowFigure:
    """
    Totals across a window of months.

    The percentage is computed from the totals, not averaged over months.
    """
    months: Tuple[MonthFigure, ...]
    total_spent: float
    total_income: float
    total_remaining: float
    raw_percent_used: float

    @property
    def month_numbers(self) -> List[int]:
        return [figure.month for figure in self.months]

    @property
    def adhoc_total(self) -> float:
        return sum((figure.adhoc_total for figure in self.months), 0.0)

    @property
    def fixed_total(self) -> float:
        return sum((figure.fixed_total for figure in self.months), 0.0)

    @property
    def percent_used(self) -> float:
        return clamp_percent(self.raw_percent_used)

    @property
    def percent_remaining(self) -> float:
        return max(0.0, 100.0 - self.percent_used)

    @property
    def is_over_budget(self) -> bool:
        return self.raw_percent_used > 100.0

    def for_month(self, month: int) -> MonthFigure:
        """
        Return the figure for one month of the window.

        Raises:
            AggregationError: If the month is not part of the window
        """
        for figure in self.months:
            if figure.month == month:
                return figure
        raise AggregationError(
            "Month is not part of the window",
            details={"month": month, "window": self.month_numbers}
        )


@dataclass(frozen=True)
class YearSummary:
    """Whole-year totals, including yearly (undated) expenses."""
    total_income: float
    monthly_expenses: float
    yearly_expenses: float
    fixed_expenses: float
    total_expenses: float
    net_savings: float


@dataclass(frozen=True)
class ChartPoint:
    """One point of a monthly line chart."""
    month: int
    label: str
    value: float


def _income_amount(income_base: IncomeInput) -> float:
    """Resolve the base monthly income from an IncomeBase or a number."""
    if income_base is None:
        return 0.0
    if isinstance(income_base, IncomeBase):
        return income_base.monthly_amount
    if isinstance(income_base, bool) or not isinstance(income_base, Real):
        raise ValidationError("Income must be a number", details={"income": income_base})
    value = float(income_base)
    if not math.isfinite(value):
        raise ValidationError("Income must be finite", details={"income": income_base})
    return value


def _window_months(window: WindowInput) -> List[int]:
    if isinstance(window, AggregationWindow):
        return list(window.months)
    return normalize_months(window)


def _adhoc_totals_by_month(expenses: Iterable[ExpenseRecord]) -> Dict[int, float]:
    """Sum monthly ad-hoc expenses per month; yearly expenses are skipped."""
    totals: Dict[int, float] = {}
    for expense in expenses:
        if expense.kind is not ExpenseKind.MONTHLY or expense.month is None:
            continue
        totals[expense.month] = totals.get(expense.month, 0.0) + expense.amount
    return totals


def aggregate(
    window: WindowInput,
    expenses: Iterable[ExpenseRecord],
    fixed_definitions: Iterable[FixedExpenseDefinition],
    income_base: IncomeInput,
    income_overrides: OverrideSource = ()
) -> WindowFigure:
    """
    Aggregate spending and income over a window of months.

    Args:
        window: Months to aggregate, or an AggregationWindow
        expenses: Ad-hoc expense records (yearly ones are ignored)
        fixed_definitions: Fixed expense definitions with their overrides
        income_base: Base monthly income (number or IncomeBase)
        income_overrides: Monthly income overrides

    Returns:
        WindowFigure with one MonthFigure per window month, in window order

    Raises:
        ValidationError: If a window element is not a month or the income
            is not a finite number
    """
    months = _window_months(window)
    base_income = _income_amount(income_base)
    income_index = index_overrides(income_overrides)
    adhoc_by_month = _adhoc_totals_by_month(expenses)
    definitions = list(fixed_definitions)

    figures: List[MonthFigure] = []
    for month in months:
        items = tuple(expand_for_month(definitions, month))
        adhoc_total = adhoc_by_month.get(month, 0.0)
        fixed_total = sum((item.amount for item in items), 0.0)
        total_spent = adhoc_total + fixed_total
        income = income_index.get(month, base_income)
        figures.append(MonthFigure(
            month=month,
            adhoc_total=adhoc_total,
            fixed_total=fixed_total,
            total_spent=total_spent,
            income=income,
            remaining=income - total_spent,
            raw_percent_used=percent_used(total_spent, income),
            income_overridden=month in income_index,
            fixed_items=items,
        ))

    total_spent = sum((f.total_spent for f in figures), 0.0)
    total_income = sum((f.income for f in figures), 0.0)
    logger.debug(
        "Aggregated months %s: spent=%s income=%s", months, total_spent, total_income
    )
    return WindowFigure(
        months=tuple(figures),
        total_spent=total_spent,
        total_income=total_income,
        total_remaining=total_income - total_spent,
        raw_percent_used=percent_used(total_spent, total_income),
    )


def aggregate_snapshot(window: WindowInput, snapshot: BudgetSnapshot) -> WindowFigure:
    """Aggregate a window using every record of a snapshot."""
    return aggregate(
        window,
        snapshot.expenses,
        snapshot.fixed_expenses,
        snapshot.income,
        snapshot.income_overrides,
    )


def month_figure(
    month: int,
    expenses: Iterable[ExpenseRecord],
    fixed_definitions: Iterable[FixedExpenseDefinition],
    income_base: IncomeInput,
    income_overrides: OverrideSource = ()
) -> MonthFigure:
    """Figures for a single month."""
    return aggregate([month], expenses, fixed_definitions, income_base, income_overrides).months[0]


def month_grid(
    expenses: Iterable[ExpenseRecord],
    fixed_definitions: Iterable[FixedExpenseDefinition],
    income_base: IncomeInput,
    income_overrides: OverrideSource = ()
) -> WindowFigure:
    """Figures for all twelve months in calendar order."""
    return aggregate(range(1, 13), expenses, fixed_definitions, income_base, income_overrides)


def yearly_expense_total(expenses: Iterable[ExpenseRecord]) -> float:
    """Sum of yearly expenses, with no month filter."""
    return sum((e.amount for e in expenses if e.kind is ExpenseKind.YEARLY), 0.0)


def monthly_expense_total(expenses: Iterable[ExpenseRecord]) -> float:
    """Sum of every monthly ad-hoc expense regardless of month."""
    return sum((e.amount for e in expenses if e.kind is ExpenseKind.MONTHLY), 0.0)


def summarize_year(
    expenses: Iterable[ExpenseRecord],
    fixed_definitions: Iterable[FixedExpenseDefinition],
    income_base: IncomeInput,
    income_overrides: OverrideSource = ()
) -> YearSummary:
    """
    Whole-year overview.

    Income is resolved month by month over all twelve months. Expenses
    combine monthly ad-hoc, yearly and fixed expenses (every applicable
    month, overrides applied).
    """
    expenses = list(expenses)
    base_income = _income_amount(income_base)
    income_index = index_overrides(income_overrides)

    total_income = sum((income_index.get(m, base_income) for m in range(1, 13)), 0.0)
    monthly_total = monthly_expense_total(expenses)
    yearly_total = yearly_expense_total(expenses)
    fixed_total = fixed_total_for_year(fixed_definitions)
    total_expenses = monthly_total + yearly_total + fixed_total

    return YearSummary(
        total_income=total_income,
        monthly_expenses=monthly_total,
        yearly_expenses=yearly_total,
        fixed_expenses=fixed_total,
        total_expenses=total_expenses,
        net_savings=total_income - total_expenses,
    )


def summarize_snapshot(snapshot: BudgetSnapshot) -> YearSummary:
    """Whole-year overview of a snapshot."""
    return summarize_year(
        snapshot.expenses,
        snapshot.fixed_expenses,
        snapshot.income,
        snapshot.income_overrides,
    )


def chart_series(
    period: PeriodSpec,
    reference_month: int,
    expenses: Iterable[ExpenseRecord],
    fixed_definitions: Iterable[FixedExpenseDefinition],
    income_base: IncomeInput,
    income_overrides: OverrideSource = (),
    view: str = "expenses"
) -> List[ChartPoint]:
    """
    Line-chart points for a period.

    Args:
        period: Named period or explicit month list
        reference_month: Month treated as "current"
        expenses: Ad-hoc expense records
        fixed_definitions: Fixed expense definitions
        income_base: Base monthly income
        income_overrides: Monthly income overrides
        view: "expenses" plots total spent, "savings" plots income - spent

    Returns:
        Points in charting order (see periods.chart_months_for_period)
    """
    if view not in CHART_VIEWS:
        raise ValidationError(
            "Unknown chart view",
            details={"view": view, "allowed": ", ".join(CHART_VIEWS)}
        )
    months = chart_months_for_period(period, reference_month)
    window = aggregate(months, expenses, fixed_definitions, income_base, income_overrides)
    return [
        ChartPoint(
            month=figure.month,
            label=calendar.month_abbr[figure.month],
            value=figure.total_spent if view == "expenses" else figure.remaining,
        )
        for figure in window.months
    ]


def percentage_change(points: Sequence[ChartPoint]) -> float:
    """
    Change from the first to the last point, in percent.

    Returns 0 with fewer than two points or when the first value is 0.
    """
    if len(points) < 2:
        return 0.0
    first = points[0].value
    last = points[-1].value
    if first == 0:
        return 0.0
    return (last - first) / first * 100.0


def months_with_data(
    expenses: Iterable[ExpenseRecord],
    fixed_definitions: Iterable[FixedExpenseDefinition]
) -> List[int]:
    """Ascending months that have a monthly expense or an applicable fixed expense."""
    months = set(_adhoc_totals_by_month(expenses))
    for definition in fixed_definitions:
        months.update(definition.applicable_months)
    return sorted(months)


def merge_thresholds(config_thresholds: Optional[Mapping[str, Any]]) -> Dict[str, float]:
    """
    Merge configured colour thresholds over the defaults.

    Raises:
        ValidationError: If a threshold is not a number or the bands are
            not increasing
    """
    merged = dict(DEFAULT_THRESHOLDS)
    for band, value in (config_thresholds or {}).items():
        if band not in merged:
            logger.warning("Ignoring unknown budget threshold '%s'", band)
            continue
        if isinstance(value, bool) or not isinstance(value, Real):
            raise ValidationError("Budget threshold must be a number", details={band: value})
        merged[band] = float(value)
    if not merged["yellow"] <= merged["orange"] <= merged["red"]:
        raise ValidationError("Budget thresholds must be increasing", details=merged)
    return merged
