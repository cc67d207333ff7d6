"""
SQLAlchemy implementations of the collaborator interfaces.

Every public method runs in its own ``session_scope`` so each call is one
transaction: committed on success, rolled back on any exception.  Database
errors that indicate an unavailable backend (``OperationalError``,
``InterfaceError``, pool ``TimeoutError``) are raised as
``CollaboratorUnavailableError`` so the orchestrator can retry them; every
other error propagates unchanged.

ORM rows are converted to kernel DTOs at this boundary; nothing above this
module sees a model instance.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from gst_kernel.db.engine import session_scope
from gst_kernel.domain.clock import Clock, SystemClock
from gst_kernel.domain.dtos import (
    Alert,
    AlertType,
    CounterpartyRecord,
    FilingDeadline,
    LedgerEntry,
    PaymentDue,
    Purchase,
    PurchaseUpdate,
)
from gst_kernel.domain.period import Period
from gst_kernel.domain.values import Money, TaxBreakdown
from gst_kernel.exceptions import (
    ClosedPeriodError,
    CollaboratorUnavailableError,
    ConsistencyError,
    PurchaseNotFoundError,
)
from gst_kernel.logging_config import get_logger
from gst_kernel.models import (
    AlertModel,
    CounterpartyRecordModel,
    FilingReturnModel,
    ItcLedgerEntryModel,
    PurchaseModel,
    SalesInvoiceModel,
)
from gst_services.collaborators import (
    AlertStore,
    CounterpartyStatementSource,
    FilingDeadlineSource,
    ItcUtilizationSource,
    LedgerStore,
    PaymentDueSource,
    PurchaseStore,
)

logger = get_logger("services.stores")

_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


class _SqlStore:
    collaborator = "store"

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Generator[Session, None, None]:
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except _UNAVAILABLE_ERRORS as exc:
            logger.warning("store_unavailable", extra={
                "collaborator": self.collaborator,
                "operation": operation,
                "error": type(exc).__name__,
            })
            raise CollaboratorUnavailableError(
                self.collaborator, operation, str(getattr(exc, "orig", exc))
            ) from exc


def _tax_from_row(row, currency: str) -> TaxBreakdown:
    return TaxBreakdown(
        cgst=Money.of(row.cgst, currency),
        sgst=Money.of(row.sgst, currency),
        igst=Money.of(row.igst, currency),
    )


def _purchase_from_row(row: PurchaseModel) -> Purchase:
    currency = row.currency
    return Purchase(
        id=row.id,
        business_id=row.business_id,
        vendor_ref=row.vendor_ref,
        invoice_number=row.invoice_number,
        invoice_date=row.invoice_date,
        category=row.category,
        gross_amount=Money.of(row.gross_amount, currency),
        tax=_tax_from_row(row, currency),
        itc_eligible=Money.of(row.itc_eligible, currency),
        itc_blocked=Money.of(row.itc_blocked, currency),
        status=row.reconciliation_status,
        manual_override=row.manual_override,
        credit_block_reason=row.credit_block_reason,
    )


def _entry_from_row(row: ItcLedgerEntryModel) -> LedgerEntry:
    currency = row.currency
    return LedgerEntry(
        period=Period.parse(row.period_code),
        opening_balance=Money.of(row.opening_balance, currency),
        itc_from_purchases=Money.of(row.itc_from_purchases, currency),
        itc_utilized=Money.of(row.itc_utilized, currency),
        closing_balance=Money.of(row.closing_balance, currency),
        is_closed=row.is_closed,
    )


def _alert_from_row(row: AlertModel) -> Alert:
    return Alert(
        id=row.id,
        business_id=row.business_id,
        type=AlertType(row.alert_type),
        subject=row.subject,
        title=row.title,
        message=row.message,
        is_read=row.is_read,
        is_sent=row.is_sent,
        created_at=row.created_at,
    )


# =============================================================================
# Purchases
# =============================================================================


class SqlPurchaseStore(_SqlStore, PurchaseStore):
    collaborator = "purchase_store"

    def list(self, business_id: str, period: Period | None = None) -> list[Purchase]:
        with self._session("list") as session:
            stmt = select(PurchaseModel).where(PurchaseModel.business_id == business_id)
            if period is not None:
                stmt = stmt.where(PurchaseModel.period_code == period.code)
            stmt = stmt.order_by(
                PurchaseModel.invoice_date,
                PurchaseModel.vendor_ref,
                PurchaseModel.invoice_number,
                PurchaseModel.id,
            )
            return [_purchase_from_row(row) for row in session.scalars(stmt)]

    def get(self, business_id: str, purchase_id: UUID) -> Purchase:
        with self._session("get") as session:
            return _purchase_from_row(self._load(session, business_id, purchase_id))

    def apply_updates(self, business_id: str, updates: Sequence[PurchaseUpdate]) -> None:
        if not updates:
            return
        with self._session("apply_updates") as session:
            for update in updates:
                row = self._load(session, business_id, update.purchase_id)
                row.reconciliation_status = update.status.value
                row.itc_eligible = update.itc_eligible.amount
                row.itc_blocked = update.itc_blocked.amount
                if update.manual_override is not None:
                    row.manual_override = update.manual_override
        logger.info("purchase_updates_applied", extra={
            "business_id": business_id,
            "update_count": len(updates),
        })

    def add(self, purchase: Purchase) -> Purchase:
        """Record a new purchase (the bookkeeping side of the application)."""
        with self._session("add") as session:
            row = PurchaseModel(
                id=purchase.id,
                business_id=purchase.business_id,
                vendor_ref=purchase.vendor_ref,
                invoice_number=purchase.invoice_number,
                invoice_date=purchase.invoice_date,
                period_code=purchase.period.code,
                category=purchase.category.value,
                currency=purchase.tax.currency.code,
                gross_amount=purchase.gross_amount.amount,
                cgst=purchase.tax.cgst.amount,
                sgst=purchase.tax.sgst.amount,
                igst=purchase.tax.igst.amount,
                itc_eligible=purchase.itc_eligible.amount,
                itc_blocked=purchase.itc_blocked.amount,
                reconciliation_status=purchase.status.value,
                manual_override=purchase.manual_override,
                credit_block_reason=purchase.credit_block_reason,
            )
            session.add(row)
        return purchase

    def delete(self, business_id: str, purchase_id: UUID) -> Purchase:
        """Remove a purchase; the caller recomputes its period's ledger."""
        with self._session("delete") as session:
            row = self._load(session, business_id, purchase_id)
            purchase = _purchase_from_row(row)
            session.delete(row)
        return purchase

    @staticmethod
    def _load(session: Session, business_id: str, purchase_id: UUID) -> PurchaseModel:
        row = session.get(PurchaseModel, purchase_id)
        if row is None or row.business_id != business_id:
            raise PurchaseNotFoundError(str(purchase_id))
        return row


# =============================================================================
# Counterparty statements
# =============================================================================


class SqlCounterpartyStatementSource(_SqlStore, CounterpartyStatementSource):
    collaborator = "counterparty_statements"

    def fetch(self, business_id: str, period: Period) -> list[CounterpartyRecord]:
        with self._session("fetch") as session:
            stmt = (
                select(CounterpartyRecordModel)
                .where(
                    CounterpartyRecordModel.business_id == business_id,
                    CounterpartyRecordModel.period_code == period.code,
                )
                .order_by(CounterpartyRecordModel.vendor_ref, CounterpartyRecordModel.invoice_number)
            )
            return [
                CounterpartyRecord(
                    vendor_ref=row.vendor_ref,
                    invoice_number=row.invoice_number,
                    invoice_date=row.invoice_date,
                    taxable_value=Money.of(row.taxable_value, row.currency),
                    tax=_tax_from_row(row, row.currency),
                    period=Period.parse(row.period_code),
                )
                for row in session.scalars(stmt)
            ]

    def import_records(self, business_id: str, records: Sequence[CounterpartyRecord]) -> int:
        """Store statement lines already parsed by the import collaborator."""
        with self._session("import_records") as session:
            for record in records:
                session.add(CounterpartyRecordModel(
                    business_id=business_id,
                    vendor_ref=record.vendor_ref,
                    invoice_number=record.invoice_number,
                    invoice_date=record.invoice_date,
                    period_code=record.period.code,
                    currency=record.tax.currency.code,
                    taxable_value=record.taxable_value.amount,
                    cgst=record.tax.cgst.amount,
                    sgst=record.tax.sgst.amount,
                    igst=record.tax.igst.amount,
                ))
        return len(records)


# =============================================================================
# Return filings: deadlines and utilization
# =============================================================================


class SqlFilingReturnSource(_SqlStore, FilingDeadlineSource, ItcUtilizationSource):
    """Deadlines and ITC claimed, both read from the filing_returns table."""

    collaborator = "filing_returns"

    def list(self, business_id: str) -> list[FilingDeadline]:
        with self._session("list") as session:
            stmt = (
                select(FilingReturnModel)
                .where(FilingReturnModel.business_id == business_id)
                .order_by(FilingReturnModel.due_date, FilingReturnModel.return_type)
            )
            return [
                FilingDeadline(
                    return_type=row.return_type,
                    period=Period.parse(row.period_code),
                    due_date=row.due_date,
                    filed=row.is_filed,
                    tax_amount=Money.of(row.tax_payable, row.currency),
                )
                for row in session.scalars(stmt)
            ]

    def utilized(self, business_id: str, periods: Sequence[Period]) -> dict[Period, Money]:
        if not periods:
            return {}
        codes = {period.code: period for period in periods}
        totals: dict[Period, Decimal] = defaultdict(Decimal)
        currencies: dict[Period, str] = {}
        with self._session("utilized") as session:
            stmt = select(FilingReturnModel).where(
                FilingReturnModel.business_id == business_id,
                FilingReturnModel.period_code.in_(codes),
            )
            for row in session.scalars(stmt):
                period = codes[row.period_code]
                totals[period] += row.itc_claimed
                currencies[period] = row.currency
        return {period: Money.of(total, currencies[period]) for period, total in totals.items()}

    def add(
        self,
        business_id: str,
        return_type: str,
        period: Period,
        due_date: date,
        *,
        filed: bool = False,
        itc_claimed: Decimal = Decimal("0"),
        tax_payable: Decimal = Decimal("0"),
        currency: str = "INR",
    ) -> UUID:
        """Register a return for a period."""
        with self._session("add") as session:
            row = FilingReturnModel(
                business_id=business_id,
                return_type=return_type,
                period_code=period.code,
                due_date=due_date,
                status="filed" if filed else "pending",
                itc_claimed=itc_claimed,
                tax_payable=tax_payable,
                currency=currency,
            )
            session.add(row)
            session.flush()
            return row.id


# =============================================================================
# Sales invoices
# =============================================================================


class SqlPaymentDueSource(_SqlStore, PaymentDueSource):
    collaborator = "sales_invoices"

    _LISTED_STATUSES = ("sent", "overdue", "paid")

    def list_due(self, business_id: str) -> list[PaymentDue]:
        with self._session("list_due") as session:
            stmt = (
                select(SalesInvoiceModel)
                .where(
                    SalesInvoiceModel.business_id == business_id,
                    SalesInvoiceModel.due_date.is_not(None),
                    SalesInvoiceModel.status.in_(self._LISTED_STATUSES),
                )
                .order_by(SalesInvoiceModel.due_date, SalesInvoiceModel.invoice_number)
            )
            return [
                PaymentDue(
                    invoice_id=str(row.id),
                    invoice_number=row.invoice_number,
                    customer_name=row.customer_name,
                    amount=Money.of(row.total_amount, row.currency),
                    due_date=row.due_date,
                    paid=row.status == "paid",
                )
                for row in session.scalars(stmt)
            ]


# =============================================================================
# Ledger
# =============================================================================


class SqlLedgerStore(_SqlStore, LedgerStore):
    collaborator = "ledger_store"

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session_factory)
        self._clock = clock or SystemClock()

    def get(self, business_id: str, period: Period) -> LedgerEntry | None:
        with self._session("get") as session:
            row = self._find(session, business_id, period)
            return _entry_from_row(row) if row is not None else None

    def list(
        self,
        business_id: str,
        start: Period | None = None,
        end: Period | None = None,
    ) -> list[LedgerEntry]:
        with self._session("list") as session:
            stmt = select(ItcLedgerEntryModel).where(
                ItcLedgerEntryModel.business_id == business_id
            )
            # YYYY-MM codes sort chronologically as strings
            if start is not None:
                stmt = stmt.where(ItcLedgerEntryModel.period_code >= start.code)
            if end is not None:
                stmt = stmt.where(ItcLedgerEntryModel.period_code <= end.code)
            stmt = stmt.order_by(ItcLedgerEntryModel.period_code)
            return [_entry_from_row(row) for row in session.scalars(stmt)]

    def replace(self, business_id: str, entries: Sequence[LedgerEntry]) -> None:
        if not entries:
            return
        with self._session("replace") as session:
            for entry in entries:
                if entry.is_closed:
                    raise ClosedPeriodError(entry.period.code)
                row = self._find(session, business_id, entry.period)
                if row is None:
                    row = ItcLedgerEntryModel(
                        business_id=business_id,
                        period_code=entry.period.code,
                    )
                    session.add(row)
                elif row.is_closed:
                    raise ClosedPeriodError(entry.period.code)
                row.currency = entry.closing_balance.currency.code
                row.opening_balance = entry.opening_balance.amount
                row.itc_from_purchases = entry.itc_from_purchases.amount
                row.itc_utilized = entry.itc_utilized.amount
                row.closing_balance = entry.closing_balance.amount
        logger.info("ledger_entries_replaced", extra={
            "business_id": business_id,
            "periods": [entry.period.code for entry in entries],
        })

    def discard(self, business_id: str, periods: Sequence[Period]) -> None:
        if not periods:
            return
        with self._session("discard") as session:
            for period in periods:
                row = self._find(session, business_id, period)
                if row is None:
                    continue
                if row.is_closed:
                    raise ClosedPeriodError(period.code)
                session.delete(row)

    def close(self, business_id: str, period: Period) -> LedgerEntry:
        with self._session("close") as session:
            row = self._find(session, business_id, period)
            if row is None:
                raise ConsistencyError(
                    f"No ledger entry for period {period.code}; reconcile it before closing"
                )
            if not row.is_closed:
                row.is_closed = True
                row.closed_at = self._clock.now()
                logger.info("ledger_period_closed", extra={
                    "business_id": business_id,
                    "period": period.code,
                    "closing_balance": str(row.closing_balance),
                })
            return _entry_from_row(row)

    @staticmethod
    def _find(session: Session, business_id: str, period: Period) -> ItcLedgerEntryModel | None:
        return session.scalars(
            select(ItcLedgerEntryModel).where(
                ItcLedgerEntryModel.business_id == business_id,
                ItcLedgerEntryModel.period_code == period.code,
            )
        ).one_or_none()


# =============================================================================
# Alerts
# =============================================================================


class SqlAlertStore(_SqlStore, AlertStore):
    collaborator = "alert_store"

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session_factory)
        self._clock = clock or SystemClock()

    def list_active(self, business_id: str) -> list[Alert]:
        return [alert for alert in self.list_all(business_id) if alert.is_active]

    def list_all(self, business_id: str) -> list[Alert]:
        with self._session("list_all") as session:
            stmt = (
                select(AlertModel)
                .where(AlertModel.business_id == business_id)
                .order_by(AlertModel.created_at, AlertModel.id)
            )
            return [_alert_from_row(row) for row in session.scalars(stmt)]

    def create(self, alerts: Sequence[Alert]) -> list[Alert]:
        if not alerts:
            return []
        with self._session("create") as session:
            active = session.execute(
                select(AlertModel.business_id, AlertModel.alert_type, AlertModel.subject)
                .where(AlertModel.business_id.in_(sorted({a.business_id for a in alerts})))
                .where(AlertModel.is_read.is_(False))
            )
            taken = {tuple(row) for row in active}
            rows = []
            for alert in alerts:
                key = (alert.business_id, alert.type.value, alert.subject)
                if key in taken:
                    logger.debug("alert_duplicate_skipped", extra={
                        "business_id": alert.business_id,
                        "alert_type": alert.type.value,
                        "subject": alert.subject,
                    })
                    continue
                taken.add(key)
                rows.append(AlertModel(
                    business_id=alert.business_id,
                    alert_type=alert.type.value,
                    subject=alert.subject,
                    title=alert.title,
                    message=alert.message,
                    is_read=alert.is_read,
                    is_sent=alert.is_sent,
                    created_at=alert.created_at or self._clock.now(),
                ))
            session.add_all(rows)
            session.flush()
            return [_alert_from_row(row) for row in rows]

    def mark_sent(self, alert_ids: Sequence[UUID]) -> None:
        if not alert_ids:
            return
        with self._session("mark_sent") as session:
            for row in session.scalars(select(AlertModel).where(AlertModel.id.in_(alert_ids))):
                row.is_sent = True

    def mark_read(self, alert_id: UUID) -> None:
        """User-side acknowledgement; frees the (type, subject) slot."""
        with self._session("mark_read") as session:
            row = session.get(AlertModel, alert_id)
            if row is not None:
                row.is_read = True
