"""
Run serialization per (business, period).

Two runs for the same key never overlap: the second fails fast with
ReconciliationInProgressError, or waits when given a lock timeout.  Runs
for different keys proceed in parallel while loading and matching, but the
ledger rebuild and alert writes of one business happen one at a time.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, date, datetime

import pytest

from gst_kernel.domain.clock import DeterministicClock
from gst_kernel.domain.dtos import AlertType, FilingDeadline
from gst_kernel.domain.period import Period
from gst_kernel.domain.values import Money
from gst_kernel.exceptions import ReconciliationInProgressError
from gst_services.reconciliation_orchestrator import ReconciliationOrchestrator
from gst_services.run_lock import RunLockRegistry
from tests.fakes import (
    BIZ,
    InMemoryAlertStore,
    InMemoryFilingSource,
    InMemoryLedgerStore,
    InMemoryPurchaseStore,
    InMemoryStatementSource,
    make_entry,
    make_purchase,
    make_record,
)

APRIL = Period(2024, 4)


class _GatedPurchaseStore(InMemoryPurchaseStore):
    """Blocks ``list`` until released so a run can be held mid-flight."""

    def __init__(self, purchases=()):
        super().__init__(purchases)
        self.entered = threading.Event()
        self.release = threading.Event()

    def list(self, business_id, period=None):
        self.entered.set()
        assert self.release.wait(timeout=5), "gate never released"
        return super().list(business_id, period)


def _orchestrator(purchases, locks=None, ledger=None, alerts=None, deadlines=(), **overrides):
    filings = InMemoryFilingSource(deadlines)
    return ReconciliationOrchestrator(
        purchases=purchases,
        statements=InMemoryStatementSource([
            make_record(),
            make_record(vendor_ref="V2", invoice_date=date(2024, 5, 10), period="2024-05"),
        ]),
        deadlines=filings,
        utilization=filings,
        ledger=ledger or InMemoryLedgerStore(),
        alerts=alerts or InMemoryAlertStore(),
        locks=locks,
        sleep=lambda seconds: None,
        **overrides,
    )


class TestRunLockRegistry:

    def test_fail_fast_when_held(self):
        locks = RunLockRegistry()
        with locks.hold(BIZ, APRIL):
            assert locks.is_locked(BIZ, APRIL)
            with pytest.raises(ReconciliationInProgressError):
                with locks.hold(BIZ, APRIL):
                    pass
        assert not locks.is_locked(BIZ, APRIL)

    def test_keys_independent(self):
        locks = RunLockRegistry()
        with locks.hold(BIZ, APRIL):
            with locks.hold(BIZ, APRIL.next()):
                with locks.hold("biz-2", APRIL):
                    assert locks.is_locked("biz-2", APRIL)

    def test_released_on_error(self):
        locks = RunLockRegistry()
        with pytest.raises(RuntimeError):
            with locks.hold(BIZ, APRIL):
                raise RuntimeError("boom")
        assert not locks.is_locked(BIZ, APRIL)

    def test_section_waits_for_holder(self):
        locks = RunLockRegistry()
        entered = threading.Event()

        def _second():
            with locks.section(BIZ):
                entered.set()

        with ThreadPoolExecutor(max_workers=1) as pool:
            with locks.section(BIZ):
                future = pool.submit(_second)
                assert not entered.wait(timeout=0.2)
            future.result(timeout=5)

        assert entered.is_set()
        assert not locks.is_section_held(BIZ)

    def test_section_per_business(self):
        locks = RunLockRegistry()
        with locks.section(BIZ):
            with locks.section("biz-2"):
                assert locks.is_section_held("biz-2")
            with locks.hold(BIZ, APRIL):
                assert locks.is_section_held(BIZ)


class TestConcurrentRuns:

    def test_same_key_second_run_rejected(self):
        store = _GatedPurchaseStore([make_purchase()])
        orchestrator = _orchestrator(store)

        with ThreadPoolExecutor(max_workers=2) as pool:
            first = pool.submit(orchestrator.run_reconciliation, BIZ, "2024-04")
            assert store.entered.wait(timeout=5)
            second = pool.submit(orchestrator.run_reconciliation, BIZ, "2024-04")
            with pytest.raises(ReconciliationInProgressError):
                second.result(timeout=5)
            store.release.set()
            summary = first.result(timeout=5)

        assert summary.succeeded
        assert summary.matched == 1

    def test_waiting_run_proceeds_after_release(self):
        store = _GatedPurchaseStore([make_purchase()])
        orchestrator = _orchestrator(store)

        with ThreadPoolExecutor(max_workers=2) as pool:
            first = pool.submit(orchestrator.run_reconciliation, BIZ, "2024-04")
            assert store.entered.wait(timeout=5)
            second = pool.submit(
                orchestrator.run_reconciliation, BIZ, "2024-04", lock_timeout=5
            )
            store.release.set()
            results = [first.result(timeout=10), second.result(timeout=10)]

        assert all(r.succeeded for r in results)
        assert sum(r.matched for r in results) == 1
        assert sum(r.unchanged for r in results) == 1

    def test_different_keys_run_in_parallel(self):
        # Each run waits inside the store for the other; serialized runs
        # would break the barrier.
        barrier = threading.Barrier(2, timeout=5)

        class _RendezvousStore(InMemoryPurchaseStore):
            def list(self, business_id, period=None):
                # Only the matching-phase load; the commit reloads inside
                # the business section.
                if period is not None:
                    barrier.wait()
                return super().list(business_id, period)

        store = _RendezvousStore([
            make_purchase(),
            make_purchase(vendor_ref="V2", invoice_date=date(2024, 5, 10)),
        ])
        orchestrator = _orchestrator(store)

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [
                pool.submit(orchestrator.run_reconciliation, BIZ, "2024-04"),
                pool.submit(orchestrator.run_reconciliation, BIZ, "2024-05"),
            ]
            summaries = [f.result(timeout=10) for f in futures]

        assert all(s.succeeded for s in summaries)
        assert [s.matched for s in summaries] == [1, 1]


class _Rendezvous:
    """
    Two callers meet at ``arrive``; a caller left alone waits out the
    timeout and carries on.  ``met`` records whether two calls overlapped.
    """

    def __init__(self, timeout: float = 1.0):
        self._barrier = threading.Barrier(2, timeout=timeout)
        self.met = False

    def arrive(self) -> None:
        try:
            self._barrier.wait()
        except threading.BrokenBarrierError:
            return
        self.met = True


class _RendezvousLedgerStore(InMemoryLedgerStore):
    def __init__(self, entries=()):
        super().__init__(entries)
        self.rendezvous = _Rendezvous()

    def list(self, business_id, start=None, end=None):
        self.rendezvous.arrive()
        return super().list(business_id, start, end)

    def rows(self):
        return InMemoryLedgerStore.list(self, BIZ)


class _RendezvousAlertStore(InMemoryAlertStore):
    def __init__(self):
        super().__init__()
        self.rendezvous = _Rendezvous()

    def list_active(self, business_id):
        self.rendezvous.arrive()
        return super().list_active(business_id)


def _april_and_may_purchases():
    return InMemoryPurchaseStore([
        make_purchase(),
        make_purchase(vendor_ref="V2", invoice_date=date(2024, 5, 10)),
    ])


class TestSameBusinessCommits:

    def test_adjacent_periods_keep_each_others_credit(self):
        ledger = _RendezvousLedgerStore([make_entry("2024-04", "0"), make_entry("2024-05", "0")])
        orchestrator = _orchestrator(_april_and_may_purchases(), ledger=ledger)

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [
                pool.submit(orchestrator.run_reconciliation, BIZ, "2024-04"),
                pool.submit(orchestrator.run_reconciliation, BIZ, "2024-05"),
            ]
            summaries = [f.result(timeout=10) for f in futures]

        assert all(s.succeeded for s in summaries)
        assert [s.matched for s in summaries] == [1, 1]
        assert not ledger.rendezvous.met
        assert [
            (e.period.code, e.opening_balance, e.itc_from_purchases, e.closing_balance)
            for e in ledger.rows()
        ] == [
            ("2024-04", Money.zero(), Money.of("1800"), Money.of("1800")),
            ("2024-05", Money.of("1800"), Money.of("1800"), Money.of("3600")),
        ]

    def test_runs_for_two_periods_create_one_deadline_alert(self):
        alerts = _RendezvousAlertStore()
        orchestrator = _orchestrator(
            _april_and_may_purchases(),
            alerts=alerts,
            deadlines=[FilingDeadline("GSTR-3B", "2024-05", date(2024, 6, 8))],
            clock=DeterministicClock(datetime(2024, 6, 5, 9, 0, tzinfo=UTC)),
        )

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [
                pool.submit(orchestrator.run_reconciliation, BIZ, "2024-04"),
                pool.submit(orchestrator.run_reconciliation, BIZ, "2024-05"),
            ]
            summaries = [f.result(timeout=10) for f in futures]

        assert all(s.succeeded for s in summaries)
        assert sum(s.alerts_created for s in summaries) == 1
        assert not alerts.rendezvous.met
        assert [a.dedup_key for a in alerts.list_all(BIZ)] == [
            (AlertType.DUE_DATE, "GSTR-3B:2024-05"),
        ]

    def test_overlapping_polls_create_one_alert(self):
        alerts = _RendezvousAlertStore()
        orchestrator = _orchestrator(
            InMemoryPurchaseStore(),
            alerts=alerts,
            deadlines=[FilingDeadline("GSTR-3B", "2024-05", date(2024, 6, 8))],
            clock=DeterministicClock(datetime(2024, 6, 5, 9, 0, tzinfo=UTC)),
        )

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [pool.submit(orchestrator.refresh_alerts, BIZ) for _ in range(2)]
            created = [f.result(timeout=10) for f in futures]

        assert sorted(len(c) for c in created) == [0, 1]
        assert not alerts.rendezvous.met
        # The second poll saw the first poll's alert and asked for nothing.
        assert len(alerts.requested) == 1
        assert [a.dedup_key for a in alerts.list_all(BIZ)] == [
            (AlertType.DUE_DATE, "GSTR-3B:2024-05"),
        ]
