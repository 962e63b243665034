"""
Override resolution for per-month replacement values.

The same rule serves income overrides and fixed-expense overrides: an
override entry for the requested month replaces the base value, otherwise
the base value applies. Only one override per month is expected. When
stored data contains several (upstream writes are not serialized), the
first entry encountered wins and a warning is logged.
"""

import logging
import math
from collections.abc import Mapping
from numbers import Real
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from exceptions import ValidationError
from records import validate_month

logger = logging.getLogger(__name__)

OverrideIndex = Dict[int, float]
OverrideSource = Union[Iterable[Any], OverrideIndex, None]


def _read_entry(entry: Any) -> Optional[Tuple[int, float]]:
    """
    Extract (month, amount) from an override entry.

    Accepts record objects exposing ``month``/``amount`` attributes and
    mappings with ``month`` plus ``amount`` (or ``override_amount`` /
    ``overrideAmount`` as stored by older clients). Returns None for
    entries that cannot be used.
    """
    if isinstance(entry, Mapping):
        month = entry.get("month")
        amount = entry.get("amount")
        if amount is None:
            amount = entry.get("override_amount", entry.get("overrideAmount"))
    else:
        month = getattr(entry, "month", None)
        amount = getattr(entry, "amount", None)

    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        return None
    if isinstance(amount, bool) or not isinstance(amount, Real):
        return None
    amount = float(amount)
    if not math.isfinite(amount) or amount < 0:
        return None
    return month, amount


def index_overrides(overrides: OverrideSource) -> OverrideIndex:
    """
    Index override entries by month.

    Args:
        overrides: Iterable of override entries (or None)

    Returns:
        Mapping of month -> override amount. For duplicate months the
        first entry encountered is kept.
    """
    index: OverrideIndex = {}
    if not overrides:
        return index
    if isinstance(overrides, Mapping):
        return dict(overrides)

    for entry in overrides:
        parsed = _read_entry(entry)
        if parsed is None:
            logger.debug("Ignoring unusable override entry: %r", entry)
            continue
        month, amount = parsed
        if month in index:
            logger.warning(
                "Duplicate override for month %s (kept %s, ignored %s)",
                month, index[month], amount
            )
            continue
        index[month] = amount
    return index


def _validate_base(base: Any) -> float:
    if isinstance(base, bool) or not isinstance(base, Real) or not math.isfinite(float(base)):
        raise ValidationError("Base value must be a finite number", details={"base": base})
    return float(base)


def resolve_override(base: float, overrides: OverrideSource, month: int) -> float:
    """
    Return the effective value for a month.

    Args:
        base: Value used when no override exists for the month
        overrides: Override entries, or an index built by index_overrides
        month: Month being resolved (1-12)

    Returns:
        The override amount for the month if present, otherwise base

    Raises:
        ValidationError: If base is not finite or month is out of range
    """
    base = _validate_base(base)
    validate_month(month)

    if isinstance(overrides, Mapping):
        value = overrides.get(month)
        return base if value is None else float(value)

    for entry in overrides or ():
        parsed = _read_entry(entry)
        if parsed is not None and parsed[0] == month:
            return parsed[1]
    return base


def has_override(overrides: OverrideSource, month: int) -> bool:
    """Return True if any usable override entry targets the month."""
    validate_month(month)
    if isinstance(overrides, Mapping):
        return month in overrides
    return any(
        parsed is not None and parsed[0] == month
        for parsed in (_read_entry(entry) for entry in overrides or ())
    )
