"""
gst_engines.alerts -- Compliance alert derivation.

Responsibility:
    Turn the current state (filing deadlines, ledger entries, purchase
    updates from the latest match, outstanding sales invoices) into alert
    decisions: create a new alert, or do nothing because an equivalent
    unread alert already exists.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``now`` is passed in by
    the caller; the deriver never reads a clock.

Invariants enforced:
    - At most one unread alert per (type, subject): candidates matching an
      unread existing alert, or an alert created earlier in the same call,
      become NOOP deltas.
    - Re-deriving from unchanged state creates nothing.
    - A deadline whose period's ledger entry is closed counts as filed.

Alert rules:
    due_date          deadline not filed, due within 0..lookahead days
    overdue           deadline not filed, due date before today; message
                      carries the late fee and interest estimate
    mismatch          purchase update moving into mismatched / not_found
    payment_reminder  unpaid sales invoice due within 0..lookahead days
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Sequence
from datetime import date, datetime

from gst_engines.penalty import assess_late_fee
from gst_engines.tracer import traced_engine
from gst_kernel.domain.dtos import (
    Alert,
    AlertAction,
    AlertDelta,
    AlertType,
    FilingDeadline,
    LedgerEntry,
    PaymentDue,
    Purchase,
    PurchaseUpdate,
    ReconciliationStatus,
)
from gst_kernel.logging_config import get_logger

logger = get_logger("engines.alerts")


def _format_date(value: date) -> str:
    return value.strftime("%d/%m/%Y")


class AlertDeriver:
    """
    Derives alert deltas for one business.

    Contract:
        Pure -- returns decisions only; persisting CREATE deltas is the
        caller's job.  Created alerts carry ``id=None`` until stored.
    """

    def __init__(self, lookahead_days: int = 7) -> None:
        if lookahead_days < 0:
            raise ValueError("lookahead_days cannot be negative")
        self._lookahead_days = lookahead_days

    @traced_engine(
        "alerts", "1.0",
        fingerprint_fields=(
            "filing_deadlines", "existing_alerts", "now", "purchase_updates", "payment_dues",
        ),
    )
    def derive(
        self,
        purchases: Sequence[Purchase],
        ledger_entries: Sequence[LedgerEntry],
        filing_deadlines: Sequence[FilingDeadline],
        existing_alerts: Sequence[Alert],
        now: datetime,
        *,
        business_id: str,
        purchase_updates: Sequence[PurchaseUpdate] = (),
        payment_dues: Sequence[PaymentDue] = (),
    ) -> list[AlertDelta]:
        t0 = time.monotonic()
        today = now.date()
        closed_periods = {entry.period for entry in ledger_entries if entry.is_closed}
        purchases_by_id = {purchase.id: purchase for purchase in purchases}

        candidates: list[tuple[AlertType, str | None, str, str]] = []
        candidates.extend(self._deadline_candidates(filing_deadlines, closed_periods, today))
        candidates.extend(_mismatch_candidates(purchase_updates, purchases_by_id))
        candidates.extend(self._payment_candidates(payment_dues, today))

        active = {alert.dedup_key for alert in existing_alerts if alert.is_active}
        created: set[tuple[AlertType, str | None]] = set()
        deltas: list[AlertDelta] = []
        for alert_type, subject, title, message in candidates:
            key = (alert_type, subject)
            if key in active:
                deltas.append(AlertDelta(
                    AlertAction.NOOP, alert_type, subject, reason="active_alert_exists",
                ))
                continue
            if key in created:
                deltas.append(AlertDelta(
                    AlertAction.NOOP, alert_type, subject, reason="duplicate_in_run",
                ))
                continue
            created.add(key)
            deltas.append(AlertDelta(
                AlertAction.CREATE,
                alert_type,
                subject,
                alert=Alert(
                    id=None,
                    business_id=business_id,
                    type=alert_type,
                    subject=subject,
                    title=title,
                    message=message,
                    created_at=now,
                ),
            ))

        logger.info("alerts_derived", extra={
            "business_id": business_id,
            "candidate_count": len(candidates),
            "alerts_created": len(created),
            "suppressed": len(deltas) - len(created),
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return deltas

    def _deadline_candidates(
        self,
        deadlines: Iterable[FilingDeadline],
        closed_periods: set,
        today: date,
    ):
        for deadline in deadlines:
            if deadline.filed or deadline.period in closed_periods:
                continue
            days_until_due = (deadline.due_date - today).days
            label = f"{deadline.return_type} for {deadline.period.filing_code}"

            if 0 <= days_until_due <= self._lookahead_days:
                when = "today" if days_until_due == 0 else f"in {days_until_due} days"
                yield (
                    AlertType.DUE_DATE,
                    deadline.subject,
                    f"{deadline.return_type} due {when}",
                    f"{label} is due {when} ({_format_date(deadline.due_date)}).",
                )
            elif days_until_due < 0:
                assessment = assess_late_fee(
                    deadline.return_type, deadline.due_date, today, deadline.tax_amount
                )
                yield (
                    AlertType.OVERDUE,
                    deadline.subject,
                    f"{deadline.return_type} overdue",
                    f"{label} was due on {_format_date(deadline.due_date)} and is "
                    f"{assessment.days_late} days late. Estimated late fee "
                    f"{assessment.late_fee}, interest {assessment.interest}.",
                )

    def _payment_candidates(self, dues: Iterable[PaymentDue], today: date):
        for due in dues:
            if due.paid:
                continue
            days_until_due = (due.due_date - today).days
            if 0 <= days_until_due <= self._lookahead_days:
                yield (
                    AlertType.PAYMENT_REMINDER,
                    due.invoice_id,
                    f"Payment due: {due.invoice_number}",
                    f"Invoice {due.invoice_number} for {due.customer_name} "
                    f"({due.amount}) is due on {_format_date(due.due_date)}.",
                )


def _mismatch_candidates(updates: Iterable[PurchaseUpdate], purchases_by_id: dict):
    for update in updates:
        if not update.enters_problem_status:
            continue
        purchase = purchases_by_id.get(update.purchase_id)
        ref = (
            f"{purchase.vendor_ref}/{purchase.invoice_number}"
            if purchase is not None
            else str(update.purchase_id)
        )
        if update.status == ReconciliationStatus.NOT_FOUND:
            title = "Invoice missing from supplier statement"
            message = (
                f"Purchase {ref} was not found in the counterparty statement. "
                f"ITC of {update.itc_blocked} is held back until it appears."
            )
        else:
            title = "Reconciliation mismatch"
            message = (
                f"Purchase {ref} does not agree with the counterparty statement "
                f"({update.note.value}). Eligible ITC {update.itc_eligible}, "
                f"blocked {update.itc_blocked}."
            )
        yield (AlertType.MISMATCH, str(update.purchase_id), title, message)


def derive_alerts(
    purchases: Sequence[Purchase],
    ledger_entries: Sequence[LedgerEntry],
    filing_deadlines: Sequence[FilingDeadline],
    existing_alerts: Sequence[Alert],
    now: datetime,
    *,
    business_id: str,
    purchase_updates: Sequence[PurchaseUpdate] = (),
    payment_dues: Sequence[PaymentDue] = (),
    lookahead_days: int = 7,
) -> list[AlertDelta]:
    """Module-level convenience wrapper around ``AlertDeriver.derive``."""
    return AlertDeriver(lookahead_days).derive(
        purchases,
        ledger_entries,
        filing_deadlines,
        existing_alerts,
        now,
        business_id=business_id,
        purchase_updates=purchase_updates,
        payment_dues=payment_dues,
    )
