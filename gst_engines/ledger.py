"""
gst_engines.ledger -- Period-by-period input tax credit ledger.

Responsibility:
    Fold reconciled purchases and credit utilization into a chain of
    LedgerEntry snapshots (opening, availed, utilized, closing), one per
    period, carrying each closing balance into the next period's opening.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - closing == opening + itc_from_purchases - itc_utilized for every entry.
    - opening of period n+1 == closing of period n; periods between the
      first and last requested period are never skipped.
    - Only purchases whose status is matched or mismatched contribute.
    - A negative closing balance is a consistency error, never clamped.
    - Amounts are rounded to currency precision, so identical inputs give
      identical entries.

Failure modes:
    - InvalidPeriodSequenceError if ``periods`` is not strictly increasing.
    - UtilizationExceedsBalanceError if utilization exceeds the balance
      available in a period; no entries are returned.
"""

from __future__ import annotations

import time
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence

from gst_engines.tracer import traced_engine
from gst_kernel.domain.dtos import LedgerEntry, Purchase
from gst_kernel.domain.period import Period
from gst_kernel.domain.values import Money
from gst_kernel.exceptions import (
    ConsistencyError,
    InvalidPeriodSequenceError,
    UtilizationExceedsBalanceError,
)
from gst_kernel.logging_config import get_logger

logger = get_logger("engines.ledger")


class LedgerAccumulator:
    """
    Builds the ITC ledger chain.

    Contract:
        Pure -- all inputs passed explicitly.  Returns new entries; never
        mutates existing ones.
    Guarantees:
        - The returned list covers every period from the first to the last
          requested period, in order.
        - Either every entry is returned or an exception is raised.
    """

    @traced_engine(
        "ledger", "1.0",
        fingerprint_fields=(
            "purchases", "prior_closing_balance", "utilized_by_period", "periods",
        ),
    )
    def build(
        self,
        purchases: Sequence[Purchase],
        prior_closing_balance: Money,
        utilized_by_period: Mapping[Period, Money],
        periods: Sequence[Period | str],
    ) -> list[LedgerEntry]:
        """
        Compute ledger entries for ``periods``.

        Args:
            purchases: Purchases (any status, any period); only matched or
                mismatched purchases dated in a computed period contribute.
            prior_closing_balance: Closing balance of the period before the
                first requested period.
            utilized_by_period: Credit utilized per period (missing = zero).
            periods: Strictly increasing periods to compute.

        Returns:
            Entries for every period from the first to the last requested
            one, gaps included.
        """
        t0 = time.monotonic()
        requested = [Period.parse(p) for p in periods]
        if not requested:
            return []
        for previous, current in zip(requested, requested[1:]):
            if current <= previous:
                raise InvalidPeriodSequenceError(previous.code, current.code)

        currency = prior_closing_balance.currency
        utilized = {Period.parse(k): v for k, v in utilized_by_period.items()}
        availed = _availed_by_period(purchases, currency)

        entries: list[LedgerEntry] = []
        opening = prior_closing_balance.round()
        for period in Period.range(requested[0], requested[-1]):
            from_purchases = availed.get(period, Money.zero(currency)).round()
            used = utilized.get(period, Money.zero(currency)).round()
            available = opening + from_purchases
            closing = available - used
            if closing.is_negative:
                logger.error("ledger_utilization_exceeds_balance", extra={
                    "period": period.code,
                    "available": str(available.amount),
                    "utilized": str(used.amount),
                })
                raise UtilizationExceedsBalanceError(
                    period.code, str(available.amount), str(used.amount)
                )
            entries.append(LedgerEntry(
                period=period,
                opening_balance=opening,
                itc_from_purchases=from_purchases,
                itc_utilized=used,
                closing_balance=closing,
            ))
            opening = closing

        logger.info("ledger_built", extra={
            "first_period": entries[0].period.code,
            "last_period": entries[-1].period.code,
            "entry_count": len(entries),
            "synthesized": len(entries) - len(requested),
            "closing_balance": str(entries[-1].closing_balance.amount),
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return entries


def _availed_by_period(purchases: Iterable[Purchase], currency) -> dict[Period, Money]:
    totals: dict[Period, Money] = defaultdict(lambda: Money.zero(currency))
    for purchase in purchases:
        if purchase.status.contributes_to_ledger:
            totals[purchase.period] = totals[purchase.period] + purchase.itc_eligible
    return dict(totals)


def build_ledger(
    purchases: Sequence[Purchase],
    prior_closing_balance: Money,
    utilized_by_period: Mapping[Period, Money],
    periods: Sequence[Period | str],
) -> list[LedgerEntry]:
    """Module-level convenience wrapper around ``LedgerAccumulator.build``."""
    return LedgerAccumulator().build(
        purchases, prior_closing_balance, utilized_by_period, periods
    )


def verify_chain(entries: Sequence[LedgerEntry]) -> None:
    """
    Check carry-forward across a sequence of entries.

    Entries must be in strictly increasing period order; for each pair of
    consecutive months the later opening must equal the earlier closing.

    Raises:
        InvalidPeriodSequenceError: entries out of order.
        ConsistencyError: a carry-forward break.
    """
    for previous, current in zip(entries, entries[1:]):
        if current.period <= previous.period:
            raise InvalidPeriodSequenceError(previous.period.code, current.period.code)
        if current.period == previous.period.next() and (
            current.opening_balance != previous.closing_balance
        ):
            raise ConsistencyError(
                f"Carry-forward broken at {current.period.code}: opening "
                f"{current.opening_balance.amount} != closing of "
                f"{previous.period.code} ({previous.closing_balance.amount})"
            )
