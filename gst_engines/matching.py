"""
gst_engines.matching -- Counterparty reconciliation of purchases.

Responsibility:
    Match recorded purchases against the counterparty-reported statement
    for one period and decide, per purchase, the reconciliation status and
    the split of its tax into eligible and blocked input tax credit.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import gst_kernel.domain, gst_config and sibling engines.

Invariants enforced:
    - Every purchase yields exactly one PurchaseUpdate, in input order.
    - itc_eligible + itc_blocked == tax total on every update the matcher
      decides.
    - Purchases carrying a manual override, or dated outside the period,
      come back unchanged.
    - Identical inputs produce identical outputs.

Failure modes:
    - PeriodMismatchError if a counterparty record belongs to another
      period.
    - "No match" is an outcome (not_found), never an exception.
    - Several candidate records are an outcome (mismatched, ambiguous),
      never an exception.

Usage:
    from gst_engines.matching import reconcile

    updates = reconcile(purchases, statement, Period.parse("2024-04"), config=config)
"""

from __future__ import annotations

import time
from collections import defaultdict
from collections.abc import Sequence

from gst_config.schema import EngineConfig
from gst_engines.eligibility import blocked_portion
from gst_engines.tracer import traced_engine
from gst_kernel.domain.dtos import (
    CounterpartyRecord,
    MatchNote,
    Purchase,
    PurchaseUpdate,
    ReconciliationStatus,
)
from gst_kernel.domain.period import Period
from gst_kernel.domain.values import Money
from gst_kernel.exceptions import PeriodMismatchError
from gst_kernel.logging_config import get_logger

logger = get_logger("engines.matching")

_OVERRIDE_STATUSES = frozenset({
    ReconciliationStatus.MATCHED,
    ReconciliationStatus.MISMATCHED,
})


class ItcMatcher:
    """
    Counterparty matcher for one business's purchases.

    Contract:
        Pure -- no I/O, no clock.  Configuration (tolerance, blocked credit
        rules) is fixed at construction.
    Guarantees:
        - ``reconcile`` returns one update per purchase, in input order.
        - Ambiguous candidates are resolved by closest invoice date, then
          smallest tax difference, then statement order.
    Non-goals:
        - Does not persist anything; the orchestrator applies the updates.
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or EngineConfig.with_defaults()
        self._rules = self._config.blocked_credit_rules

    @traced_engine(
        "matching", "1.0",
        fingerprint_fields=("purchases", "counterparty_records", "period"),
    )
    def reconcile(
        self,
        purchases: Sequence[Purchase],
        counterparty_records: Sequence[CounterpartyRecord],
        period: Period | str,
    ) -> list[PurchaseUpdate]:
        """
        Decide the reconciliation outcome of every purchase.

        Args:
            purchases: Purchases recorded by the business.
            counterparty_records: Statement lines for ``period``.
            period: The period being reconciled.

        Returns:
            One PurchaseUpdate per purchase, in input order.

        Raises:
            PeriodMismatchError: a statement line is for another period.
        """
        t0 = time.monotonic()
        period = Period.parse(period)

        for record in counterparty_records:
            if record.period != period:
                logger.warning("counterparty_record_period_mismatch", extra={
                    "record_ref": record.ref,
                    "record_period": record.period.code,
                    "expected_period": period.code,
                })
                raise PeriodMismatchError(record.ref, record.period.code, period.code)

        logger.info("match_run_started", extra={
            "period": period.code,
            "purchase_count": len(purchases),
            "record_count": len(counterparty_records),
        })

        index: dict[tuple[str, str], list[tuple[int, CounterpartyRecord]]] = defaultdict(list)
        for position, record in enumerate(counterparty_records):
            index[record.key].append((position, record))

        updates: list[PurchaseUpdate] = []
        for purchase in purchases:
            if purchase.period != period:
                updates.append(_unchanged(purchase, MatchNote.OUT_OF_PERIOD))
            elif purchase.manual_override:
                updates.append(_unchanged(purchase, MatchNote.MANUAL_OVERRIDE))
            else:
                updates.append(self._match_one(purchase, index.get(purchase.key, [])))

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        counts: dict[str, int] = defaultdict(int)
        for update in updates:
            counts[update.note.value] += 1
        logger.info("match_run_completed", extra={
            "period": period.code,
            "notes": dict(counts),
            "changed": sum(1 for u in updates if u.is_change),
            "duration_ms": duration_ms,
        })
        return updates

    def _match_one(
        self,
        purchase: Purchase,
        candidates: list[tuple[int, CounterpartyRecord]],
    ) -> PurchaseUpdate:
        tax = purchase.tax_total

        if not candidates:
            return _decided(
                purchase,
                ReconciliationStatus.NOT_FOUND,
                eligible=Money.zero(tax.currency),
                note=MatchNote.NOT_FOUND,
            )

        if len(candidates) > 1:
            record = self._break_tie(purchase, candidates)
            logger.info("match_ambiguous", extra={
                "purchase_id": str(purchase.id),
                "candidate_count": len(candidates),
                "chosen_record": record.ref,
            })
            return _decided(
                purchase,
                ReconciliationStatus.MISMATCHED,
                eligible=self._partial_credit(purchase, record),
                note=MatchNote.AMBIGUOUS,
                counterparty=record,
                candidate_count=len(candidates),
            )

        record = candidates[0][1]
        difference = abs(record.declared_tax - tax)
        if difference <= self._config.tolerance_for(tax):
            return _decided(
                purchase,
                ReconciliationStatus.MATCHED,
                eligible=tax - blocked_portion(purchase, self._rules),
                note=MatchNote.EXACT if difference.is_zero else MatchNote.WITHIN_TOLERANCE,
                counterparty=record,
                candidate_count=1,
            )

        logger.debug("match_amount_mismatch", extra={
            "purchase_id": str(purchase.id),
            "recorded_tax": str(tax.amount),
            "declared_tax": str(record.declared_tax.amount),
        })
        return _decided(
            purchase,
            ReconciliationStatus.MISMATCHED,
            eligible=self._partial_credit(purchase, record),
            note=MatchNote.AMOUNT_MISMATCH,
            counterparty=record,
            candidate_count=1,
        )

    def _partial_credit(self, purchase: Purchase, record: CounterpartyRecord) -> Money:
        """Credit availed on a mismatch: the smaller of declared and recorded tax."""
        tax = purchase.tax_total
        if not blocked_portion(purchase, self._rules).is_zero:
            return Money.zero(tax.currency)
        declared = record.declared_tax
        return declared if declared <= tax else tax

    @staticmethod
    def _break_tie(
        purchase: Purchase,
        candidates: list[tuple[int, CounterpartyRecord]],
    ) -> CounterpartyRecord:
        tax = purchase.tax_total

        def rank(item: tuple[int, CounterpartyRecord]):
            position, record = item
            return (
                abs((record.invoice_date - purchase.invoice_date).days),
                abs(record.declared_tax - tax).amount,
                position,
            )

        return min(candidates, key=rank)[1]


def _unchanged(purchase: Purchase, note: MatchNote) -> PurchaseUpdate:
    return PurchaseUpdate(
        purchase_id=purchase.id,
        previous_status=purchase.status,
        status=purchase.status,
        previous_itc_eligible=purchase.itc_eligible,
        previous_itc_blocked=purchase.itc_blocked,
        itc_eligible=purchase.itc_eligible,
        itc_blocked=purchase.itc_blocked,
        note=note,
        previous_manual_override=purchase.manual_override,
    )


def _decided(
    purchase: Purchase,
    status: ReconciliationStatus,
    *,
    eligible: Money,
    note: MatchNote,
    counterparty: CounterpartyRecord | None = None,
    candidate_count: int = 0,
) -> PurchaseUpdate:
    return PurchaseUpdate(
        purchase_id=purchase.id,
        previous_status=purchase.status,
        status=status,
        previous_itc_eligible=purchase.itc_eligible,
        previous_itc_blocked=purchase.itc_blocked,
        itc_eligible=eligible,
        itc_blocked=purchase.tax_total - eligible,
        note=note,
        previous_manual_override=purchase.manual_override,
        counterparty=counterparty,
        candidate_count=candidate_count,
    )


def reconcile(
    purchases: Sequence[Purchase],
    counterparty_records: Sequence[CounterpartyRecord],
    period: Period | str,
    *,
    config: EngineConfig | None = None,
) -> list[PurchaseUpdate]:
    """Module-level convenience wrapper around ``ItcMatcher.reconcile``."""
    return ItcMatcher(config).reconcile(purchases, counterparty_records, period)


def apply_override(purchase: Purchase, status: ReconciliationStatus | str) -> PurchaseUpdate:
    """
    Record a human decision on a purchase's status.

    The ITC split is left as it is and the purchase becomes sticky: later
    runs return it unchanged until ``clear_override``.

    Raises:
        ValueError: if ``status`` is neither ``matched`` nor ``mismatched``.
    """
    status = ReconciliationStatus(status)
    if status not in _OVERRIDE_STATUSES:
        raise ValueError(f"Cannot override a purchase to status {status.value!r}")
    return PurchaseUpdate(
        purchase_id=purchase.id,
        previous_status=purchase.status,
        status=status,
        previous_itc_eligible=purchase.itc_eligible,
        previous_itc_blocked=purchase.itc_blocked,
        itc_eligible=purchase.itc_eligible,
        itc_blocked=purchase.itc_blocked,
        note=MatchNote.MANUAL_STATUS,
        manual_override=True,
        previous_manual_override=purchase.manual_override,
    )


def clear_override(purchase: Purchase) -> PurchaseUpdate:
    """Release a purchase so the next run decides its status again."""
    return PurchaseUpdate(
        purchase_id=purchase.id,
        previous_status=purchase.status,
        status=purchase.status,
        previous_itc_eligible=purchase.itc_eligible,
        previous_itc_blocked=purchase.itc_blocked,
        itc_eligible=purchase.itc_eligible,
        itc_blocked=purchase.itc_blocked,
        note=MatchNote.OVERRIDE_CLEARED,
        manual_override=False,
        previous_manual_override=purchase.manual_override,
    )
