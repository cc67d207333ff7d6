"""
SQL collaborator stores against a real database (in-memory SQLite unless
GST_TEST_DATABASE_URL says otherwise).
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from gst_kernel.domain.dtos import (
    Alert,
    AlertType,
    FilingDeadline,
    ReconciliationStatus,
)
from gst_kernel.domain.period import Period
from gst_kernel.domain.values import Money
from gst_kernel.exceptions import (
    ClosedPeriodError,
    CollaboratorUnavailableError,
    ConsistencyError,
    PurchaseNotFoundError,
)
from gst_kernel.models import SalesInvoiceModel
from gst_engines.matching import apply_override, reconcile
from gst_services.reconciliation_orchestrator import ReconciliationOrchestrator
from gst_services.stores import (
    SqlAlertStore,
    SqlCounterpartyStatementSource,
    SqlFilingReturnSource,
    SqlLedgerStore,
    SqlPaymentDueSource,
    SqlPurchaseStore,
)
from tests.fakes import BIZ, RecordingNotifier, make_entry, make_purchase, make_record

APRIL = Period(2024, 4)
MAY = Period(2024, 5)


class TestSqlPurchaseStore:

    def test_add_and_get(self, session_factory):
        store = SqlPurchaseStore(session_factory)
        purchase = store.add(make_purchase(inter_state=True))

        loaded = store.get(BIZ, purchase.id)

        assert loaded == purchase
        assert loaded.tax.igst == Money.of("1800")

    def test_list_filters_business_and_period(self, session_factory):
        store = SqlPurchaseStore(session_factory)
        april = store.add(make_purchase("A-1"))
        store.add(make_purchase("M-1", invoice_date=date(2024, 5, 2)))
        store.add(make_purchase("X-1", business_id="biz-2"))

        assert len(store.list(BIZ)) == 2
        assert [p.id for p in store.list(BIZ, APRIL)] == [april.id]

    def test_apply_updates(self, session_factory):
        store = SqlPurchaseStore(session_factory)
        purchase = store.add(make_purchase())
        [update] = reconcile([purchase], [make_record(tax="1500")], APRIL)

        store.apply_updates(BIZ, [update])

        loaded = store.get(BIZ, purchase.id)
        assert loaded.status == ReconciliationStatus.MISMATCHED
        assert loaded.itc_eligible == Money.of("1500")
        assert loaded.itc_blocked == Money.of("300")
        assert not loaded.manual_override

    def test_apply_override_and_revert(self, session_factory):
        store = SqlPurchaseStore(session_factory)
        purchase = store.add(make_purchase())
        update = apply_override(purchase, ReconciliationStatus.MATCHED)

        store.apply_updates(BIZ, [update])
        assert store.get(BIZ, purchase.id).manual_override

        store.apply_updates(BIZ, [update.reverted()])
        reverted = store.get(BIZ, purchase.id)
        assert reverted.status == ReconciliationStatus.PENDING
        assert not reverted.manual_override

    def test_unknown_purchase_rolls_back_batch(self, session_factory):
        store = SqlPurchaseStore(session_factory)
        purchase = store.add(make_purchase())
        ghost = make_purchase("GHOST")
        updates = reconcile([purchase, ghost], [], APRIL)

        with pytest.raises(PurchaseNotFoundError):
            store.apply_updates(BIZ, updates)
        assert store.get(BIZ, purchase.id).status == ReconciliationStatus.PENDING

    def test_get_other_business(self, session_factory):
        store = SqlPurchaseStore(session_factory)
        purchase = store.add(make_purchase())
        with pytest.raises(PurchaseNotFoundError):
            store.get("biz-2", purchase.id)

    def test_delete(self, session_factory):
        store = SqlPurchaseStore(session_factory)
        purchase = store.add(make_purchase())

        assert store.delete(BIZ, purchase.id) == purchase
        assert store.list(BIZ) == []


class TestSqlLedgerStore:

    def test_replace_inserts_and_updates(self, session_factory, deterministic_clock):
        store = SqlLedgerStore(session_factory, deterministic_clock)
        store.replace(BIZ, [make_entry("2024-04", "0", "1800")])
        store.replace(BIZ, [make_entry("2024-04", "0", "1500"), make_entry("2024-05", "1500")])

        entries = store.list(BIZ)

        assert [e.period for e in entries] == [APRIL, MAY]
        assert entries[0].closing_balance == Money.of("1500")

    def test_list_range(self, session_factory, deterministic_clock):
        store = SqlLedgerStore(session_factory, deterministic_clock)
        store.replace(BIZ, [
            make_entry("2023-12", "0"),
            make_entry("2024-01", "0"),
            make_entry("2024-02", "0"),
        ])

        entries = store.list(BIZ, Period(2024, 1), Period(2024, 2))

        assert [e.period.code for e in entries] == ["2024-01", "2024-02"]

    def test_close_freezes_entry(self, session_factory, deterministic_clock):
        store = SqlLedgerStore(session_factory, deterministic_clock)
        store.replace(BIZ, [make_entry("2024-04", "0", "1800")])

        closed = store.close(BIZ, APRIL)

        assert closed.is_closed
        with pytest.raises(ClosedPeriodError):
            store.replace(BIZ, [make_entry("2024-04", "0", "900")])
        with pytest.raises(ClosedPeriodError):
            store.discard(BIZ, [APRIL])
        assert store.get(BIZ, APRIL).closing_balance == Money.of("1800")

    def test_close_without_entry(self, session_factory, deterministic_clock):
        store = SqlLedgerStore(session_factory, deterministic_clock)
        with pytest.raises(ConsistencyError):
            store.close(BIZ, APRIL)

    def test_discard(self, session_factory, deterministic_clock):
        store = SqlLedgerStore(session_factory, deterministic_clock)
        store.replace(BIZ, [make_entry("2024-04", "0"), make_entry("2024-05", "0")])

        store.discard(BIZ, [MAY, Period(2024, 6)])

        assert [e.period for e in store.list(BIZ)] == [APRIL]


class TestSqlAlertStore:

    def _alert(self, subject: str) -> Alert:
        return Alert(
            id=None,
            business_id=BIZ,
            type=AlertType.DUE_DATE,
            subject=subject,
            title="GSTR-3B due in 3 days",
            message="GSTR-3B for 042024 is due in 3 days (18/05/2024).",
        )

    def test_create_assigns_ids(self, session_factory, deterministic_clock):
        store = SqlAlertStore(session_factory, deterministic_clock)

        [created] = store.create([self._alert("GSTR-3B:2024-04")])

        assert created.id is not None
        assert created.created_at == deterministic_clock.now()
        assert [a.id for a in store.list_all(BIZ)] == [created.id]

    def test_create_skips_active_duplicates(self, session_factory, deterministic_clock):
        store = SqlAlertStore(session_factory, deterministic_clock)
        [first] = store.create([self._alert("GSTR-3B:2024-05")])

        again = store.create([
            self._alert("GSTR-3B:2024-05"),
            self._alert("GSTR-1:2024-05"),
            self._alert("GSTR-1:2024-05"),
            replace(self._alert("GSTR-3B:2024-05"), business_id="biz-2"),
        ])

        assert [(a.business_id, a.subject) for a in again] == [
            (BIZ, "GSTR-1:2024-05"),
            ("biz-2", "GSTR-3B:2024-05"),
        ]
        assert len(store.list_active(BIZ)) == 2

        store.mark_read(first.id)
        [reissued] = store.create([self._alert("GSTR-3B:2024-05")])
        assert reissued.id != first.id

    def test_mark_sent_and_read(self, session_factory, deterministic_clock):
        store = SqlAlertStore(session_factory, deterministic_clock)
        first, second = store.create([self._alert("a"), self._alert("b")])

        store.mark_sent([first.id])
        store.mark_read(second.id)

        by_subject = {a.subject: a for a in store.list_all(BIZ)}
        assert by_subject["a"].is_sent
        assert by_subject["b"].is_read
        assert [a.subject for a in store.list_active(BIZ)] == ["a"]


class TestSqlSources:

    def test_statement_import_and_fetch(self, session_factory):
        source = SqlCounterpartyStatementSource(session_factory)
        source.import_records(BIZ, [
            make_record("INV-1"),
            make_record("INV-2", period="2024-05", invoice_date=date(2024, 5, 3)),
        ])

        records = source.fetch(BIZ, APRIL)

        assert [r.invoice_number for r in records] == ["INV-1"]
        assert records[0].declared_tax == Money.of("1800")

    def test_filing_deadlines_and_utilization(self, session_factory):
        source = SqlFilingReturnSource(session_factory)
        source.add(BIZ, "GSTR-3B", APRIL, date(2024, 5, 20), itc_claimed=Decimal("700"))
        source.add(
            BIZ, "GSTR-1", APRIL, date(2024, 5, 11),
            filed=True, itc_claimed=Decimal("50"), tax_payable=Decimal("1200"),
        )

        deadlines = source.list(BIZ)
        utilized = source.utilized(BIZ, [APRIL, MAY])

        assert [(d.return_type, d.filed) for d in deadlines] == [
            ("GSTR-1", True),
            ("GSTR-3B", False),
        ]
        assert deadlines[0] == FilingDeadline(
            "GSTR-1", APRIL, date(2024, 5, 11), filed=True, tax_amount=Money.of("1200")
        )
        assert utilized == {APRIL: Money.of("750")}

    def test_payment_dues(self, session, session_factory):
        session.add_all([
            SalesInvoiceModel(
                business_id=BIZ, invoice_number="S-1", customer_name="Acme",
                due_date=date(2024, 5, 17), total_amount=Decimal("5000"), status="sent",
            ),
            SalesInvoiceModel(
                business_id=BIZ, invoice_number="S-2", customer_name="Beta",
                due_date=date(2024, 5, 18), total_amount=Decimal("900"), status="paid",
            ),
            SalesInvoiceModel(
                business_id=BIZ, invoice_number="S-3", customer_name="Gamma",
                due_date=date(2024, 5, 19), total_amount=Decimal("100"), status="draft",
            ),
        ])
        session.commit()

        dues = SqlPaymentDueSource(session_factory).list_due(BIZ)

        assert [(d.invoice_number, d.paid) for d in dues] == [("S-1", False), ("S-2", True)]
        assert dues[0].amount == Money.of("5000")


class TestUnavailableBackend:

    def test_operational_error_mapped(self):
        def _refusing_factory():
            raise OperationalError("SELECT 1", {}, ConnectionRefusedError("refused"))

        store = SqlPurchaseStore(_refusing_factory)

        with pytest.raises(CollaboratorUnavailableError) as exc_info:
            store.list(BIZ)
        assert exc_info.value.collaborator == "purchase_store"
        assert exc_info.value.operation == "list"


class TestOrchestratorOnSql:

    def test_full_cycle(self, session_factory, deterministic_clock):
        purchases = SqlPurchaseStore(session_factory)
        statements = SqlCounterpartyStatementSource(session_factory)
        filings = SqlFilingReturnSource(session_factory)
        ledger = SqlLedgerStore(session_factory, deterministic_clock)
        alerts = SqlAlertStore(session_factory, deterministic_clock)
        orchestrator = ReconciliationOrchestrator(
            purchases=purchases,
            statements=statements,
            deadlines=filings,
            utilization=filings,
            ledger=ledger,
            alerts=alerts,
            payment_dues=SqlPaymentDueSource(session_factory),
            clock=deterministic_clock,
            sleep=lambda seconds: None,
        )
        matched = purchases.add(make_purchase("INV-001"))
        short = purchases.add(make_purchase("INV-002", tax="1000"))
        statements.import_records(BIZ, [make_record("INV-001"), make_record("inv-002 ", tax="800")])
        filings.add(BIZ, "GSTR-3B", APRIL, date(2024, 5, 18), itc_claimed=Decimal("500"))

        summary = orchestrator.run_reconciliation(BIZ, "2024-04")

        assert summary.succeeded
        assert (summary.matched, summary.mismatched) == (1, 1)
        assert summary.alerts_created == 2
        assert purchases.get(BIZ, matched.id).status == ReconciliationStatus.MATCHED
        assert purchases.get(BIZ, short.id).itc_eligible == Money.of("800")
        [entry] = orchestrator.get_ledger(BIZ)
        assert entry.itc_from_purchases == Money.of("2600")
        assert entry.closing_balance == Money.of("2100")

        rerun = orchestrator.run_reconciliation(BIZ, "2024-04")
        assert rerun.unchanged == 2
        assert rerun.alerts_created == 0

        notifier = RecordingNotifier()
        assert len(orchestrator.dispatch_alerts(BIZ, notifier)) == 2
        assert orchestrator.dispatch_alerts(BIZ, notifier) == []

        orchestrator.close_period(BIZ, "2024-04")
        assert orchestrator.run_reconciliation(BIZ, "2024-04").errors[0].code == "CLOSED_PERIOD"
