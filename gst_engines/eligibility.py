"""
gst_engines.eligibility -- Blocked input tax credit rules.

A purchase's credit is blocked in full when a configured
``BlockedCreditRule`` names its category and its ``credit_block_reason``
(motor vehicles bought as capital goods, food and beverage expenses, and so
on).  Every category is otherwise eligible.

Pure functions, no I/O.
"""

from __future__ import annotations

from collections.abc import Iterable

from gst_kernel.domain.dtos import BlockedCreditRule, Purchase, PurchaseCategory
from gst_kernel.domain.values import Money


def _category_admits_credit(category: PurchaseCategory) -> bool:
    match category:
        case (
            PurchaseCategory.GOODS
            | PurchaseCategory.SERVICES
            | PurchaseCategory.CAPITAL_GOODS
            | PurchaseCategory.EXPENSE
        ):
            return True


def is_blocked(purchase: Purchase, rules: Iterable[BlockedCreditRule]) -> bool:
    """True when the purchase's credit is blocked outright."""
    if not _category_admits_credit(purchase.category):
        return True
    return any(rule.applies_to(purchase) for rule in rules)


def blocked_portion(purchase: Purchase, rules: Iterable[BlockedCreditRule]) -> Money:
    """The part of the purchase's tax that can never be availed."""
    if is_blocked(purchase, rules):
        return purchase.tax_total
    return Money.zero(purchase.tax.currency)


def initial_eligibility(
    purchase: Purchase,
    rules: Iterable[BlockedCreditRule],
) -> tuple[Money, Money]:
    """
    (eligible, blocked) for a freshly recorded purchase.

    eligible + blocked always equals the purchase's tax total.
    """
    rules = tuple(rules)
    blocked = blocked_portion(purchase, rules)
    return purchase.tax_total - blocked, blocked
