"""
Expansion of fixed (recurring) expense definitions into monthly items.

A definition contributes to a month only when the month is in its
applicable months. Its amount for that month is resolved against the
definition's own overrides.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List

from overrides import index_overrides
from records import FixedExpenseDefinition, validate_month

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FixedExpenseItem:
    """
    Effective fixed expense for one month.

    Attributes:
        name: Name of the owning definition
        amount: Amount after override resolution
        definition_id: Identifier of the owning definition
        month: Month the item applies to
        overridden: True when an override replaced the base amount
    """
    name: str
    amount: float
    definition_id: str
    month: int
    overridden: bool


def _item_for(definition: FixedExpenseDefinition, month: int) -> FixedExpenseItem:
    index = index_overrides(definition.overrides)
    overridden = month in index
    return FixedExpenseItem(
        name=definition.name,
        amount=index[month] if overridden else definition.amount,
        definition_id=definition.id,
        month=month,
        overridden=overridden,
    )


def expand_for_month(
    definitions: Iterable[FixedExpenseDefinition],
    month: int
) -> List[FixedExpenseItem]:
    """
    Return the fixed expenses that apply to a month.

    Args:
        definitions: Fixed expense definitions (with their overrides)
        month: Month to expand (1-12)

    Returns:
        One item per applicable definition, in input order.
    """
    validate_month(month)
    return [_item_for(d, month) for d in definitions if d.applies_to(month)]


def expand_for_year(definitions: Iterable[FixedExpenseDefinition]) -> List[FixedExpenseItem]:
    """
    Flatten every definition into one item per applicable month.

    Items follow definition order, then each definition's applicable-month
    order. Definitions without applicable months produce nothing.
    """
    items: List[FixedExpenseItem] = []
    for definition in definitions:
        for month in definition.applicable_months:
            items.append(_item_for(definition, month))
    return items


def fixed_total_for_month(definitions: Iterable[FixedExpenseDefinition], month: int) -> float:
    """Sum of effective fixed expense amounts for a month."""
    return sum((item.amount for item in expand_for_month(definitions, month)), 0.0)


def fixed_total_for_year(definitions: Iterable[FixedExpenseDefinition]) -> float:
    """Sum of effective fixed expense amounts over every applicable month."""
    total = sum((item.amount for item in expand_for_year(definitions)), 0.0)
    logger.debug("Fixed expense total for year: %s", total)
    return total
