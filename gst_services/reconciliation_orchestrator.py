"""
ReconciliationOrchestrator -- the imperative shell around the ITC engines.

Responsibility:
    Run a reconciliation for one (business, period): load purchases and the
    counterparty statement, match, rebuild the ledger from the period
    forward, then persist purchase updates, ledger entries and alerts as
    one logical unit.  Also serves the ledger and alert queries, manual
    status overrides, ledger recomputation after a purchase is deleted,
    the alert poll cycle and alert dispatch.

Architecture position:
    Services -- imperative shell.  The only layer that talks to
    collaborators, reads the clock, retries and takes locks.  Engines are
    called with fully loaded inputs.

Invariants enforced:
    - One run at a time per (business_id, period).
    - Ledger rebuilds and alert writes of one business are serialized:
      each commit, poll cycle and period close re-reads the purchases,
      ledger and active alerts inside the business's section lock.
    - Nothing is written until matching and the ledger pass have
      succeeded; a failure during the writes is compensated by restoring
      the previous purchase state and ledger entries.
    - Closed periods are never rewritten.  Forward propagation stops
      before the first later closed period; if that period's recorded
      opening balance no longer equals the recomputed carry-forward the
      run fails with CarryForwardBrokenError.
    - Purchases under a manual override are left alone by runs.

Failure modes:
    - ReconciliationInProgressError (raised) when the run lock is busy.
    - ValidationError, ConsistencyError, and CollaboratorUnavailableError
      after retries are folded into a failed RunSummary by
      ``run_reconciliation``; the single-purchase operations raise them.

Usage:
    orchestrator = ReconciliationOrchestrator(
        purchases=SqlPurchaseStore(factory),
        statements=SqlCounterpartyStatementSource(factory),
        deadlines=filings,
        utilization=filings,
        ledger=SqlLedgerStore(factory),
        alerts=SqlAlertStore(factory),
        payment_dues=SqlPaymentDueSource(factory),
        config=get_engine_config(),
    )
    summary = orchestrator.run_reconciliation("biz-1", "2024-04")
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import TypeVar
from uuid import UUID, uuid4

from gst_config.schema import EngineConfig
from gst_engines.alerts import AlertDeriver
from gst_engines.ledger import LedgerAccumulator, verify_chain
from gst_engines.matching import ItcMatcher, apply_override, clear_override
from gst_kernel.domain.clock import Clock, SystemClock
from gst_kernel.domain.dtos import (
    Alert,
    AlertAction,
    AlertFilter,
    LedgerEntry,
    Purchase,
    PurchaseUpdate,
    ReconciliationStatus,
    RunStatus,
    RunSummary,
)
from gst_kernel.domain.period import Period
from gst_kernel.domain.values import Money
from gst_kernel.exceptions import (
    CarryForwardBrokenError,
    ClosedPeriodError,
    CollaboratorUnavailableError,
    ConsistencyError,
    ValidationError,
)
from gst_kernel.logging_config import LogContext, get_logger
from gst_services.collaborators import (
    AlertNotifier,
    AlertStore,
    CounterpartyStatementSource,
    FilingDeadlineSource,
    ItcUtilizationSource,
    LedgerStore,
    PaymentDueSource,
    PurchaseStore,
)
from gst_services.retry import RetryPolicy, call_with_retry
from gst_services.run_lock import RunLockRegistry

logger = get_logger("services.reconciliation_orchestrator")

T = TypeVar("T")

_UNSET = object()


@dataclass(frozen=True)
class _LedgerPlan:
    """Ledger entries to write and the stored entries they replace."""

    entries: list[LedgerEntry]
    stored: list[LedgerEntry]
    previous: dict[Period, LedgerEntry] = field(default_factory=dict)


@dataclass(frozen=True)
class _CommitResult:
    updates: list[PurchaseUpdate]
    entries: list[LedgerEntry]
    alerts: list[Alert]


def _apply_update(purchase: Purchase, update: PurchaseUpdate) -> Purchase:
    return replace(
        purchase,
        status=update.status,
        itc_eligible=update.itc_eligible,
        itc_blocked=update.itc_blocked,
        manual_override=(
            update.manual_override
            if update.manual_override is not None
            else purchase.manual_override
        ),
    )


class ReconciliationOrchestrator:
    """
    Coordinates matching, ledger maintenance and alerting for a business.

    Contract:
        Collaborators are injected; the clock, lock registry and sleep
        function are injectable for tests.
    Guarantees:
        - ``run_reconciliation`` never raises for validation, consistency
          or collaborator failures; it returns a failed RunSummary.
        - Re-running with unchanged inputs writes nothing new.
    Non-goals:
        - Does not record, edit or delete purchases (collaborator side).
        - Does not deliver notifications itself; ``dispatch_alerts`` hands
          them to an AlertNotifier.
    """

    def __init__(
        self,
        *,
        purchases: PurchaseStore,
        statements: CounterpartyStatementSource,
        deadlines: FilingDeadlineSource,
        utilization: ItcUtilizationSource,
        ledger: LedgerStore,
        alerts: AlertStore,
        payment_dues: PaymentDueSource | None = None,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        locks: RunLockRegistry | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._purchases = purchases
        self._statements = statements
        self._deadlines = deadlines
        self._utilization = utilization
        self._ledger = ledger
        self._alerts = alerts
        self._payment_dues = payment_dues
        self._config = config or EngineConfig.with_defaults()
        self._clock = clock or SystemClock()
        self._locks = locks or RunLockRegistry()
        self._sleep = sleep

        self._matcher = ItcMatcher(self._config)
        self._accumulator = LedgerAccumulator()
        self._deriver = AlertDeriver(self._config.alert_lookahead_days)
        self._retry_policy = RetryPolicy(
            max_attempts=self._config.retry_max_attempts,
            base_delay=self._config.retry_base_delay_seconds,
            max_delay=self._config.retry_max_delay_seconds,
        )

    # =========================================================================
    # Reconciliation run
    # =========================================================================

    def run_reconciliation(
        self,
        business_id: str,
        period: Period | str,
        *,
        lock_timeout: float | None | object = _UNSET,
    ) -> RunSummary:
        """
        Reconcile one period of one business.

        Args:
            business_id: Business whose purchases are reconciled.
            period: Period to reconcile (``YYYY-MM`` or ``MMYYYY``).
            lock_timeout: Seconds to wait for a concurrent run on the same
                key; None fails fast.  Defaults to the configured value.

        Returns:
            RunSummary; ``status`` is failed when validation, consistency
            or collaborator errors stopped the run (nothing is persisted).

        Raises:
            ReconciliationInProgressError: another run holds the lock.
        """
        period = Period.parse(period)
        timeout = self._config.lock_timeout_seconds if lock_timeout is _UNSET else lock_timeout
        run_id = str(uuid4())

        with LogContext.bind(business_id=business_id, period=period.code, run_id=run_id):
            with self._locks.hold(business_id, period, timeout):
                t0 = time.monotonic()
                logger.info("reconciliation_run_started")
                try:
                    summary = self._run(business_id, period)
                except (ValidationError, ConsistencyError, CollaboratorUnavailableError) as exc:
                    logger.warning(
                        "reconciliation_run_failed",
                        exc_info=True,
                        extra={"error_code": exc.code},
                    )
                    return RunSummary.failed(business_id, period, exc)

                logger.info("reconciliation_run_completed", extra={
                    "matched": summary.matched,
                    "mismatched": summary.mismatched,
                    "not_found": summary.not_found,
                    "unchanged": summary.unchanged,
                    "alerts_created": summary.alerts_created,
                    "ledger_periods": [p.code for p in summary.ledger_periods],
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                })
                return summary

    def _run(self, business_id: str, period: Period) -> RunSummary:
        self._ensure_open(business_id, period)

        in_period = self._call(
            "purchases.list", lambda: self._purchases.list(business_id, period)
        )
        records = self._call(
            "statements.fetch", lambda: self._statements.fetch(business_id, period)
        )
        updates = self._matcher.reconcile(in_period, records, period)

        result = self._commit(business_id, period, updates)

        changed = [u for u in result.updates if u.is_change]
        by_status = Counter(u.status for u in changed)
        return RunSummary(
            business_id=business_id,
            period=period,
            status=RunStatus.COMPLETED,
            matched=by_status[ReconciliationStatus.MATCHED],
            mismatched=by_status[ReconciliationStatus.MISMATCHED],
            not_found=by_status[ReconciliationStatus.NOT_FOUND],
            unchanged=len(result.updates) - len(changed),
            alerts_created=len(result.alerts),
            ledger_periods=tuple(entry.period for entry in result.entries),
        )

    # =========================================================================
    # Shared write path
    # =========================================================================

    def _commit(
        self,
        business_id: str,
        period: Period,
        updates: Sequence[PurchaseUpdate],
    ) -> _CommitResult:
        """
        Rebuild the ledger for ``updates`` and persist everything.

        Runs inside the business section, so the purchases, ledger and
        active alerts it reads include every earlier commit of other
        periods.  Every read and computation happens before the first write.
        """
        with self._locks.section(business_id):
            return self._commit_locked(business_id, period, updates)

    def _commit_locked(
        self,
        business_id: str,
        period: Period,
        updates: Sequence[PurchaseUpdate],
    ) -> _CommitResult:
        purchases = self._call("purchases.list", lambda: self._purchases.list(business_id))
        by_id = {update.purchase_id: update for update in updates}
        projected = [
            _apply_update(p, by_id[p.id]) if p.id in by_id else p for p in purchases
        ]
        plan = self._plan_ledger(business_id, period, projected)

        deadlines = self._call("deadlines.list", lambda: self._deadlines.list(business_id))
        existing_alerts = self._call(
            "alerts.list_active", lambda: self._alerts.list_active(business_id)
        )
        payment_dues = self._load_payment_dues(business_id)

        changed = [u for u in updates if u.is_change]
        purchases_written = False
        ledger_written = False
        try:
            self._call(
                "purchases.apply_updates",
                lambda: self._purchases.apply_updates(business_id, changed),
            )
            purchases_written = True
            self._call("ledger.replace", lambda: self._ledger.replace(business_id, plan.entries))
            ledger_written = True

            deltas = self._deriver.derive(
                projected,
                _merge_entries(plan.stored, plan.entries),
                deadlines,
                existing_alerts,
                self._clock.now(),
                business_id=business_id,
                purchase_updates=changed,
                payment_dues=payment_dues,
            )
            new_alerts = [d.alert for d in deltas if d.action == AlertAction.CREATE]
            created = self._call("alerts.create", lambda: self._alerts.create(new_alerts))
        except Exception:
            self._compensate(
                business_id,
                changed if purchases_written else [],
                plan if ledger_written else None,
            )
            raise

        return _CommitResult(updates=list(updates), entries=plan.entries, alerts=created)

    def _plan_ledger(
        self,
        business_id: str,
        period: Period,
        purchases: Sequence[Purchase],
    ) -> _LedgerPlan:
        """
        Compute ledger entries from ``period`` up to the next closed period.

        Starts right after the latest stored entry before ``period`` so
        untracked months in between are filled in.  Stops at the last
        stored period, or just before the first closed period after
        ``period``, whose recorded opening must still match.
        """
        stored = sorted(
            self._call("ledger.list", lambda: self._ledger.list(business_id)),
            key=lambda entry: entry.period,
        )
        by_period = {entry.period: entry for entry in stored}

        current = by_period.get(period)
        if current is not None and current.is_closed:
            raise ClosedPeriodError(period.code)

        earlier = [entry for entry in stored if entry.period < period]
        if earlier:
            anchor = earlier[-1]
            start = anchor.period.next()
            prior_closing = anchor.closing_balance
        else:
            start = period
            prior_closing = Money.zero(self._config.currency)

        closed_after = [e for e in stored if e.is_closed and e.period > period]
        first_closed = closed_after[0] if closed_after else None
        if first_closed is not None:
            end = first_closed.period.previous()
        else:
            later = [entry.period for entry in stored if entry.period > period]
            end = later[-1] if later else period

        periods = Period.range(start, end)
        utilized = self._call(
            "utilization.utilized", lambda: self._utilization.utilized(business_id, periods)
        )
        entries = self._accumulator.build(purchases, prior_closing, utilized, periods)

        if earlier:
            verify_chain([earlier[-1], *entries])
        else:
            verify_chain(entries)

        if first_closed is not None and first_closed.opening_balance != entries[-1].closing_balance:
            logger.error("carry_forward_broken", extra={
                "closed_period": first_closed.period.code,
                "recorded_opening": str(first_closed.opening_balance.amount),
                "recomputed_opening": str(entries[-1].closing_balance.amount),
            })
            raise CarryForwardBrokenError(
                first_closed.period.code,
                str(first_closed.opening_balance.amount),
                str(entries[-1].closing_balance.amount),
            )

        previous = {e.period: by_period[e.period] for e in entries if e.period in by_period}
        return _LedgerPlan(entries=entries, stored=stored, previous=previous)

    def _compensate(
        self,
        business_id: str,
        written_updates: Sequence[PurchaseUpdate],
        ledger_plan: _LedgerPlan | None,
    ) -> None:
        """Undo writes of a failed commit, ledger first."""
        logger.warning("reconciliation_compensating", extra={
            "reverted_updates": len(written_updates),
            "restored_ledger": ledger_plan is not None,
        })
        try:
            if ledger_plan is not None:
                restore = sorted(ledger_plan.previous.values(), key=lambda e: e.period)
                created = [
                    e.period for e in ledger_plan.entries if e.period not in ledger_plan.previous
                ]
                self._call("ledger.replace", lambda: self._ledger.replace(business_id, restore))
                self._call("ledger.discard", lambda: self._ledger.discard(business_id, created))
            if written_updates:
                reverted = [update.reverted() for update in written_updates]
                self._call(
                    "purchases.apply_updates",
                    lambda: self._purchases.apply_updates(business_id, reverted),
                )
        except Exception:
            logger.critical("reconciliation_compensation_failed", exc_info=True)
            raise

    # =========================================================================
    # Queries
    # =========================================================================

    def get_ledger(
        self,
        business_id: str,
        start: Period | str | None = None,
        end: Period | str | None = None,
    ) -> list[LedgerEntry]:
        start = Period.parse(start) if start is not None else None
        end = Period.parse(end) if end is not None else None
        return self._call("ledger.list", lambda: self._ledger.list(business_id, start, end))

    def get_alerts(
        self,
        business_id: str,
        alert_filter: AlertFilter | None = None,
    ) -> list[Alert]:
        alert_filter = alert_filter or AlertFilter()
        alerts = self._call("alerts.list_all", lambda: self._alerts.list_all(business_id))
        return [alert for alert in alerts if alert_filter.accepts(alert)]

    # =========================================================================
    # Manual overrides and recomputation
    # =========================================================================

    def mark_matched(self, business_id: str, purchase_id: UUID) -> Purchase:
        """Confirm a purchase as matched by hand; later runs leave it alone."""
        return self._override(business_id, purchase_id, ReconciliationStatus.MATCHED)

    def mark_mismatched(self, business_id: str, purchase_id: UUID) -> Purchase:
        """Flag a purchase as mismatched by hand; later runs leave it alone."""
        return self._override(business_id, purchase_id, ReconciliationStatus.MISMATCHED)

    def clear_override(self, business_id: str, purchase_id: UUID) -> Purchase:
        """Hand a manually decided purchase back to automatic matching."""
        return self._commit_single(business_id, purchase_id, clear_override)

    def _override(
        self,
        business_id: str,
        purchase_id: UUID,
        status: ReconciliationStatus,
    ) -> Purchase:
        return self._commit_single(
            business_id, purchase_id, lambda purchase: apply_override(purchase, status)
        )

    def _commit_single(
        self,
        business_id: str,
        purchase_id: UUID,
        decide: Callable[[Purchase], PurchaseUpdate],
    ) -> Purchase:
        # The first read only locates the period; the update is built from a
        # second read taken under the run lock.
        located = self._call(
            "purchases.get", lambda: self._purchases.get(business_id, purchase_id)
        )
        period = located.period
        with LogContext.bind(business_id=business_id, period=period.code):
            with self._locks.hold(business_id, period, self._config.lock_timeout_seconds):
                self._ensure_open(business_id, period)
                purchase = self._call(
                    "purchases.get", lambda: self._purchases.get(business_id, purchase_id)
                )
                update = decide(purchase)
                self._commit(business_id, period, [update])
        logger.info("purchase_override_applied", extra={
            "purchase_id": str(purchase.id),
            "status": update.status.value,
            "note": update.note.value,
        })
        return _apply_update(purchase, update)

    def recompute_ledger(self, business_id: str, period: Period | str) -> list[LedgerEntry]:
        """
        Rebuild the ledger from ``period`` forward without matching.

        Called after a purchase is deleted.  A closed ``period`` raises
        ClosedPeriodError: the deletion needs an adjustment instead.
        """
        period = Period.parse(period)
        with LogContext.bind(business_id=business_id, period=period.code):
            with self._locks.hold(business_id, period, self._config.lock_timeout_seconds):
                self._ensure_open(business_id, period)
                result = self._commit(business_id, period, [])
        logger.info("ledger_recomputed", extra={
            "periods": [entry.period.code for entry in result.entries],
        })
        return result.entries

    def close_period(self, business_id: str, period: Period | str) -> LedgerEntry:
        """Freeze a period's ledger entry once its return is filed."""
        period = Period.parse(period)
        with self._locks.hold(business_id, period, self._config.lock_timeout_seconds):
            with self._locks.section(business_id):
                return self._call(
                    "ledger.close", lambda: self._ledger.close(business_id, period)
                )

    # =========================================================================
    # Alerts
    # =========================================================================

    def refresh_alerts(self, business_id: str) -> list[Alert]:
        """Poll cycle: derive time-driven alerts from the current state."""
        with self._locks.section(business_id):
            created = self._refresh_alerts_locked(business_id)
        logger.info("alerts_refreshed", extra={
            "business_id": business_id,
            "alerts_created": len(created),
        })
        return created

    def _refresh_alerts_locked(self, business_id: str) -> list[Alert]:
        purchases = self._call("purchases.list", lambda: self._purchases.list(business_id))
        entries = self._call("ledger.list", lambda: self._ledger.list(business_id))
        deadlines = self._call("deadlines.list", lambda: self._deadlines.list(business_id))
        existing = self._call(
            "alerts.list_active", lambda: self._alerts.list_active(business_id)
        )
        payment_dues = self._load_payment_dues(business_id)

        deltas = self._deriver.derive(
            purchases,
            entries,
            deadlines,
            existing,
            self._clock.now(),
            business_id=business_id,
            payment_dues=payment_dues,
        )
        new_alerts = [d.alert for d in deltas if d.action == AlertAction.CREATE]
        return self._call("alerts.create", lambda: self._alerts.create(new_alerts))

    def dispatch_alerts(self, business_id: str, notifier: AlertNotifier) -> list[Alert]:
        """
        Send every unsent, unread alert and flag the delivered ones as sent.

        A delivery failure leaves that alert unsent for the next dispatch.
        """
        pending = [
            alert
            for alert in self._call("alerts.list_all", lambda: self._alerts.list_all(business_id))
            if not alert.is_sent and alert.is_active
        ]
        delivered: list[Alert] = []
        for alert in pending:
            try:
                notifier.send(alert)
            except Exception:
                logger.warning(
                    "alert_delivery_failed",
                    exc_info=True,
                    extra={"alert_id": str(alert.id), "alert_type": alert.type.value},
                )
                continue
            delivered.append(replace(alert, is_sent=True))

        sent_ids = [alert.id for alert in delivered]
        self._call("alerts.mark_sent", lambda: self._alerts.mark_sent(sent_ids))
        logger.info("alerts_dispatched", extra={
            "business_id": business_id,
            "pending": len(pending),
            "delivered": len(delivered),
        })
        return delivered

    # =========================================================================
    # Helpers
    # =========================================================================

    def _ensure_open(self, business_id: str, period: Period) -> None:
        entry = self._call("ledger.get", lambda: self._ledger.get(business_id, period))
        if entry is not None and entry.is_closed:
            raise ClosedPeriodError(period.code)

    def _load_payment_dues(self, business_id: str):
        if self._payment_dues is None:
            return []
        return self._call(
            "payment_dues.list_due", lambda: self._payment_dues.list_due(business_id)
        )

    def _call(self, operation: str, func: Callable[[], T]) -> T:
        return call_with_retry(
            func,
            operation=operation,
            policy=self._retry_policy,
            sleep=self._sleep,
        )


def _merge_entries(
    stored: Sequence[LedgerEntry],
    recomputed: Sequence[LedgerEntry],
) -> list[LedgerEntry]:
    merged = {entry.period: entry for entry in stored}
    merged.update({entry.period: entry for entry in recomputed})
    return [merged[p] for p in sorted(merged)]
