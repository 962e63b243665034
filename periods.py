"""
Month-window selection for named time periods.

Windows are month-of-year abstractions: a "past 3 months" window in
January is [1, 12, 11] and the caller is responsible for supplying records
scoped to the right year(s).
"""

import enum
import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Tuple, Union

from exceptions import ValidationError
from records import validate_month

logger = logging.getLogger(__name__)


class TimePeriod(enum.Enum):
    """Named periods a window can be built from."""
    THIS_MONTH = "this-month"
    LAST_MONTH = "last-month"
    PAST_3_MONTHS = "past-3-months"
    PAST_6_MONTHS = "past-6-months"
    ENTIRE_YEAR = "entire-year"

    @classmethod
    def parse(cls, value: Union["TimePeriod", str]) -> "TimePeriod":
        """
        Parse a period from its value, its member name, or a chart label.

        Chart labels: 1M, 3M, 6M, 1Y and All (1Y and All both mean the
        entire year).

        Raises:
            ValidationError: If the value is not a known period
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip()
            if key in _PERIOD_ALIASES:
                return _PERIOD_ALIASES[key]
            normalized = key.lower().replace("_", "-")
            for member in cls:
                if normalized in (member.value, member.name.lower().replace("_", "-")):
                    return member
        raise ValidationError(
            "Unknown time period",
            details={"period": value, "allowed": ", ".join(m.value for m in cls)}
        )


_PERIOD_ALIASES = {
    "1M": TimePeriod.THIS_MONTH,
    "3M": TimePeriod.PAST_3_MONTHS,
    "6M": TimePeriod.PAST_6_MONTHS,
    "1Y": TimePeriod.ENTIRE_YEAR,
    "All": TimePeriod.ENTIRE_YEAR,
}

_TRAILING_LENGTHS = {
    TimePeriod.PAST_3_MONTHS: 3,
    TimePeriod.PAST_6_MONTHS: 6,
}

PeriodSpec = Union[TimePeriod, str, Iterable[int]]


def previous_month(month: int) -> int:
    """Return the month before the given one, wrapping January to December."""
    validate_month(month)
    return 12 if month == 1 else month - 1


def trailing_months(reference_month: int, count: int) -> List[int]:
    """
    Return the ``count`` months ending at and including the reference month.

    Ordered reverse chronologically: the reference month first.
    """
    validate_month(reference_month, "reference_month")
    if count < 1 or count > 12:
        raise ValidationError("Trailing window must cover 1-12 months", details={"count": count})
    return [((reference_month - i - 1 + 12) % 12) + 1 for i in range(count)]


def normalize_months(months: Iterable[int]) -> List[int]:
    """
    Validate an explicit month list and drop repeated months.

    Input order is preserved.

    Raises:
        ValidationError: If any element is not an integer in [1, 12]
    """
    result: List[int] = []
    for month in months:
        validate_month(month, "window month")
        if month not in result:
            result.append(month)
    return result


def months_for_period(period: PeriodSpec, reference_month: int) -> List[int]:
    """
    Return the months a period denotes.

    Args:
        period: A TimePeriod, its string form, or an explicit month list
        reference_month: The "current" month (1-12)

    Returns:
        List of months. Trailing windows are reverse chronological; the
        entire year is ascending; explicit lists keep their order.
    """
    validate_month(reference_month, "reference_month")
    if not isinstance(period, (TimePeriod, str)):
        return normalize_months(period)

    period = TimePeriod.parse(period)
    if period is TimePeriod.THIS_MONTH:
        return [reference_month]
    if period is TimePeriod.LAST_MONTH:
        return [previous_month(reference_month)]
    if period is TimePeriod.ENTIRE_YEAR:
        return list(range(1, 13))
    return trailing_months(reference_month, _TRAILING_LENGTHS[period])


def chart_months_for_period(period: PeriodSpec, reference_month: int) -> List[int]:
    """
    Return the months of a period in charting order.

    The entire year is ascending. Any other window is ordered by distance
    from the reference month, furthest first, so the line ends on the
    current month.
    """
    named = isinstance(period, (TimePeriod, str))
    months = months_for_period(period, reference_month)
    if named and TimePeriod.parse(period) is TimePeriod.ENTIRE_YEAR:
        return sorted(months)
    return sorted(months, key=lambda m: (reference_month - m + 12) % 12, reverse=True)


@dataclass(frozen=True)
class AggregationWindow:
    """
    Months under analysis plus the reference month they were derived from.

    Attributes:
        months: Ordered, de-duplicated months (1-12)
        reference_month: Month treated as "current"
        period: Named period, or None for an explicit month list
    """
    months: Tuple[int, ...]
    reference_month: int
    period: Optional[TimePeriod] = None

    def __post_init__(self) -> None:
        validate_month(self.reference_month, "reference_month")
        object.__setattr__(self, "months", tuple(normalize_months(self.months)))

    def __iter__(self):
        return iter(self.months)

    def __len__(self) -> int:
        return len(self.months)

    def chart_order(self) -> List[int]:
        """Months of this window in charting order."""
        return chart_months_for_period(
            self.period if self.period is not None else self.months,
            self.reference_month
        )


def build_window(
    period: PeriodSpec,
    today: Optional[date] = None,
    reference_month: Optional[int] = None
) -> AggregationWindow:
    """
    Build an AggregationWindow for a period.

    Args:
        period: Named period or explicit month list
        today: Date whose month is the reference (defaults to today)
        reference_month: Explicit reference month, takes precedence over today

    Returns:
        AggregationWindow
    """
    if reference_month is None:
        reference_month = (today or date.today()).month
    named = None if not isinstance(period, (TimePeriod, str)) else TimePeriod.parse(period)
    months = months_for_period(named if named is not None else period, reference_month)
    logger.debug("Window for %s (reference month %s): %s", named or "explicit", reference_month, months)
    return AggregationWindow(months=tuple(months), reference_month=reference_month, period=named)
