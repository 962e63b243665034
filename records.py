"""
Record types consumed by the aggregation engine.

These are the validated, immutable shapes built at the storage boundary
(see database_ops.DatabaseManager.load_snapshot) or by tests and import
files. The engine only ever sees these records, so it does not repeat
type checks beyond the ones done here.
"""

import enum
import logging
import math
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Iterable, List, Optional, Tuple

from exceptions import ValidationError

logger = logging.getLogger(__name__)

MIN_MONTH = 1
MAX_MONTH = 12
MIN_YEAR = 2000
MAX_YEAR = 2100
MAX_AMOUNT = 999_999_999
MAX_NAME_LENGTH = 200


class ExpenseKind(enum.Enum):
    """Kinds of ad-hoc expense records."""
    YEARLY = "yearly"
    MONTHLY = "monthly"


class IncomeKey(enum.Enum):
    """Setting keys under which a base income is stored."""
    MONTHLY = "monthlyIncome"
    YEARLY = "yearlyIncome"


def coerce_enum(enum_cls, value: Any, field_name: str):
    """Convert a raw value to a member of enum_cls or raise ValidationError."""
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"{field_name} must be one of: {allowed}",
            details={field_name: value},
            original_error=exc
        ) from exc


def validate_month(month: Any, field_name: str = "month") -> int:
    """
    Validate a 1-indexed calendar month.

    Args:
        month: Candidate month value
        field_name: Name used in the error details

    Returns:
        The month as an int

    Raises:
        ValidationError: If the value is not an integer in [1, 12]
    """
    if isinstance(month, bool) or not isinstance(month, int):
        raise ValidationError(
            "Month must be an integer",
            details={field_name: month}
        )
    if month < MIN_MONTH or month > MAX_MONTH:
        raise ValidationError(
            "Month must be between 1 and 12",
            details={field_name: month}
        )
    return month


def validate_amount(
    amount: Any,
    field_name: str = "amount",
    allow_zero: bool = False
) -> float:
    """
    Validate a monetary amount and return it as a float.

    Args:
        amount: Candidate amount
        field_name: Name used in the error details
        allow_zero: Accept 0 as a valid amount

    Returns:
        The amount as a float

    Raises:
        ValidationError: If the amount is not a finite, in-range number
    """
    if isinstance(amount, bool) or not isinstance(amount, Real):
        raise ValidationError(
            f"{field_name} must be a valid number",
            details={field_name: amount}
        )
    value = float(amount)
    if not math.isfinite(value):
        raise ValidationError(
            f"{field_name} must be finite",
            details={field_name: amount}
        )
    if value < 0 or (value == 0 and not allow_zero):
        bound = "zero or greater" if allow_zero else "greater than zero"
        raise ValidationError(
            f"{field_name} must be {bound}",
            details={field_name: amount}
        )
    if value > MAX_AMOUNT:
        raise ValidationError(
            f"{field_name} is too large (max: {MAX_AMOUNT:,})",
            details={field_name: amount}
        )
    return value


def validate_year(year: Any) -> int:
    """Validate a calendar year in the supported range."""
    if isinstance(year, bool) or not isinstance(year, int):
        raise ValidationError("Year must be an integer", details={"year": year})
    if year < MIN_YEAR or year > MAX_YEAR:
        raise ValidationError(
            f"Year must be between {MIN_YEAR} and {MAX_YEAR}",
            details={"year": year}
        )
    return year


def validate_name(name: Any) -> str:
    """Validate and trim an expense name."""
    if not isinstance(name, str):
        raise ValidationError("Expense name must be a string", details={"name": name})
    trimmed = name.strip()
    if not trimmed:
        raise ValidationError("Expense name cannot be empty")
    if len(trimmed) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"Expense name is too long (max: {MAX_NAME_LENGTH} characters)",
            details={"length": len(trimmed)}
        )
    return trimmed


@dataclass(frozen=True)
class ExpenseRecord:
    """
    An ad-hoc, dated expense.

    Attributes:
        id: Storage identifier
        name: Expense name
        amount: Positive amount
        year: Year the expense belongs to
        kind: ExpenseKind.YEARLY or ExpenseKind.MONTHLY
        month: Month (1-12), None for undated yearly expenses
        date: Optional ISO date string
    """
    id: str
    name: str
    amount: float
    year: int
    kind: ExpenseKind = ExpenseKind.YEARLY
    month: Optional[int] = None
    date: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", validate_name(self.name))
        object.__setattr__(self, "amount", validate_amount(self.amount))
        object.__setattr__(self, "kind", coerce_enum(ExpenseKind, self.kind, "kind"))
        if self.month is not None:
            validate_month(self.month)

    @property
    def is_monthly(self) -> bool:
        return self.kind is ExpenseKind.MONTHLY


@dataclass(frozen=True)
class FixedExpenseOverride:
    """
    Replacement amount for one fixed expense in one month of one year.

    A zero amount is accepted and means the expense is waived that month.
    """
    fixed_expense_id: str
    month: int
    year: int
    amount: float
    date: Optional[str] = None

    def __post_init__(self) -> None:
        validate_month(self.month)
        object.__setattr__(
            self, "amount", validate_amount(self.amount, "override amount", allow_zero=True)
        )


@dataclass(frozen=True)
class FixedExpenseDefinition:
    """
    A recurring expense template applied to a set of months each year.

    Attributes:
        id: Storage identifier
        name: Expense name
        amount: Base amount used when no override exists
        applicable_months: Months the expense applies to, in stored order
        year: Year the definition belongs to
        overrides: Per-month overrides owned by this definition
    """
    id: str
    name: str
    amount: float
    applicable_months: Tuple[int, ...]
    year: int
    overrides: Tuple[FixedExpenseOverride, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", validate_name(self.name))
        object.__setattr__(self, "amount", validate_amount(self.amount))

        months: List[int] = []
        for month in self.applicable_months:
            validate_month(month, "applicable_months")
            if month in months:
                logger.warning(
                    "Fixed expense '%s' lists month %s more than once; keeping one",
                    self.name, month
                )
                continue
            months.append(month)
        if not months:
            logger.warning(
                "Fixed expense '%s' has no applicable months and will never apply",
                self.name
            )
        object.__setattr__(self, "applicable_months", tuple(months))

        overrides = []
        for override in self.overrides:
            if override.year != self.year:
                logger.warning(
                    "Dropping %s override for fixed expense '%s' (month %s) belonging to %s",
                    override.year, self.name, override.month, self.year
                )
                continue
            overrides.append(override)
        object.__setattr__(self, "overrides", tuple(overrides))

    def applies_to(self, month: int) -> bool:
        """Return True if the expense is scheduled for the given month."""
        return month in self.applicable_months


@dataclass(frozen=True)
class IncomeBase:
    """
    Default income for a year.

    Attributes:
        value: Stored value (monthly or yearly depending on key)
        year: Year the income applies to
        key: IncomeKey.MONTHLY or IncomeKey.YEARLY
    """
    value: float
    year: int
    key: IncomeKey = IncomeKey.MONTHLY

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", validate_amount(self.value, "income", allow_zero=True))
        object.__setattr__(self, "key", coerce_enum(IncomeKey, self.key, "key"))

    @property
    def monthly_amount(self) -> float:
        """Base income for a single month."""
        if self.key is IncomeKey.YEARLY:
            return self.value / 12
        return self.value


@dataclass(frozen=True)
class MonthlyIncomeOverride:
    """Replacement for the base monthly income in one (month, year)."""
    month: int
    year: int
    amount: float
    date: Optional[str] = None

    def __post_init__(self) -> None:
        validate_month(self.month)
        object.__setattr__(
            self, "amount", validate_amount(self.amount, "income override", allow_zero=True)
        )


@dataclass(frozen=True)
class BudgetSnapshot:
    """
    Immutable set of records for one user and year.

    Load it once per page or command and hand the same snapshot to every
    aggregation call so all views agree on totals.
    """
    year: int
    expenses: Tuple[ExpenseRecord, ...] = field(default_factory=tuple)
    fixed_expenses: Tuple[FixedExpenseDefinition, ...] = field(default_factory=tuple)
    income: Optional[IncomeBase] = None
    income_overrides: Tuple[MonthlyIncomeOverride, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        validate_year(self.year)
        object.__setattr__(self, "expenses", tuple(self.expenses))
        object.__setattr__(self, "fixed_expenses", tuple(self.fixed_expenses))
        object.__setattr__(self, "income_overrides", tuple(self.income_overrides))

    @property
    def monthly_income(self) -> float:
        """Base monthly income, 0 when none is configured."""
        return self.income.monthly_amount if self.income else 0.0

    def monthly_expenses(self) -> List[ExpenseRecord]:
        return [e for e in self.expenses if e.kind is ExpenseKind.MONTHLY]

    def yearly_expenses(self) -> List[ExpenseRecord]:
        return [e for e in self.expenses if e.kind is ExpenseKind.YEARLY]


def attach_overrides(
    definitions: Iterable[FixedExpenseDefinition],
    overrides: Iterable[FixedExpenseOverride]
) -> List[FixedExpenseDefinition]:
    """
    Return copies of the definitions with their overrides attached.

    Overrides are matched on fixed_expense_id and keep their input order;
    overrides for unknown definitions or for another year are dropped with
    a warning.
    """
    definitions = list(definitions)
    grouped = {d.id: [] for d in definitions}
    for override in overrides:
        if override.fixed_expense_id not in grouped:
            logger.warning(
                "Dropping override for unknown fixed expense %s (month %s)",
                override.fixed_expense_id, override.month
            )
            continue
        grouped[override.fixed_expense_id].append(override)

    return [
        FixedExpenseDefinition(
            id=d.id,
            name=d.name,
            amount=d.amount,
            applicable_months=d.applicable_months,
            year=d.year,
            overrides=tuple(d.overrides) + tuple(grouped[d.id]),
        )
        for d in definitions
    ]
