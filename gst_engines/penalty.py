"""
gst_engines.penalty -- Late fee and interest estimate for overdue returns.

Per-day late fee by return type, capped per return, plus simple interest at
18% per annum on unpaid tax for the days late.  The figures are an estimate
shown on overdue alerts, not a statutory computation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from gst_kernel.domain.values import Money

ANNUAL_INTEREST_RATE = Decimal("0.18")
DAYS_PER_YEAR = Decimal("365")

_DEFAULT_CAP = Decimal("5000")

# return type -> (fee per day, maximum fee)
_LATE_FEE_SCHEDULE: dict[str, tuple[Decimal, Decimal]] = {
    "GSTR-1": (Decimal("50"), _DEFAULT_CAP),
    "GSTR-3B": (Decimal("50"), _DEFAULT_CAP),
    "CMP-08": (Decimal("50"), _DEFAULT_CAP),
    "GSTR-4": (Decimal("50"), _DEFAULT_CAP),
    "GSTR-9": (Decimal("200"), Decimal("10000")),
}


def _schedule_for(return_type: str) -> tuple[Decimal, Decimal]:
    key = return_type.strip().upper().replace("_", "-")
    return _LATE_FEE_SCHEDULE.get(key, (Decimal("0"), _DEFAULT_CAP))


@dataclass(frozen=True)
class LateFeeAssessment:
    return_type: str
    days_late: int
    late_fee: Money
    interest: Money

    @property
    def total(self) -> Money:
        return self.late_fee + self.interest

    @property
    def is_late(self) -> bool:
        return self.days_late > 0


def daily_late_fee(return_type: str) -> Decimal:
    """Fee per day for a return type (zero when the type is not listed)."""
    return _schedule_for(return_type)[0]


def assess_late_fee(
    return_type: str,
    due_date: date,
    as_of: date,
    tax_amount: Money | None = None,
) -> LateFeeAssessment:
    """
    Late fee and interest accrued on a return not filed by ``due_date``.

    Days late counts whole days after the due date, so a return filed on
    its due date owes nothing.  ``tax_amount`` is the unpaid tax interest
    accrues on; zero when omitted.
    """
    currency = tax_amount.currency if tax_amount is not None else "INR"
    days_late = max(0, (as_of - due_date).days)

    fee_per_day, cap = _schedule_for(return_type)
    late_fee = min(fee_per_day * days_late, cap)

    interest = Money.zero(currency)
    if tax_amount is not None and tax_amount.is_positive and days_late:
        interest = (tax_amount * ANNUAL_INTEREST_RATE * days_late / DAYS_PER_YEAR).round()

    return LateFeeAssessment(
        return_type=return_type,
        days_late=days_late,
        late_fee=Money.of(late_fee, currency).round(),
        interest=interest,
    )
