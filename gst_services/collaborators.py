"""
Collaborator interfaces of the reconciliation orchestrator.

Each interface is the narrow slice of an external system the engine needs:
record storage for purchases, ledger entries and alerts; the counterparty
statement feed; filing deadlines and utilization from the returns side;
outstanding sales invoices; and outbound notification transport.

Implementations raise ``CollaboratorUnavailableError`` for transient
failures (the orchestrator retries those) and typed ``GstKernelError``
subclasses for everything else.  SQLAlchemy implementations live in
``gst_services.stores``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from uuid import UUID

from gst_kernel.domain.dtos import (
    Alert,
    CounterpartyRecord,
    FilingDeadline,
    LedgerEntry,
    PaymentDue,
    Purchase,
    PurchaseUpdate,
)
from gst_kernel.domain.period import Period
from gst_kernel.domain.values import Money


class PurchaseStore(ABC):
    """Recorded inbound invoices."""

    @abstractmethod
    def list(self, business_id: str, period: Period | None = None) -> list[Purchase]:
        """Purchases of the business, optionally restricted to one period."""

    @abstractmethod
    def get(self, business_id: str, purchase_id: UUID) -> Purchase:
        """Raises PurchaseNotFoundError when absent."""

    @abstractmethod
    def apply_updates(self, business_id: str, updates: Sequence[PurchaseUpdate]) -> None:
        """Persist status, ITC split and override flag of each update atomically."""


class CounterpartyStatementSource(ABC):
    @abstractmethod
    def fetch(self, business_id: str, period: Period) -> list[CounterpartyRecord]:
        """Statement lines reported by suppliers for ``period``."""


class FilingDeadlineSource(ABC):
    @abstractmethod
    def list(self, business_id: str) -> list[FilingDeadline]:
        """Every known return deadline of the business, filed or not."""


class ItcUtilizationSource(ABC):
    @abstractmethod
    def utilized(self, business_id: str, periods: Sequence[Period]) -> dict[Period, Money]:
        """Credit set off against output tax, per period (missing = zero)."""


class PaymentDueSource(ABC):
    @abstractmethod
    def list_due(self, business_id: str) -> list[PaymentDue]:
        """Outstanding sales invoices that carry a due date."""


class LedgerStore(ABC):
    """Per-period ITC ledger snapshots."""

    @abstractmethod
    def get(self, business_id: str, period: Period) -> LedgerEntry | None: ...

    @abstractmethod
    def list(
        self,
        business_id: str,
        start: Period | None = None,
        end: Period | None = None,
    ) -> list[LedgerEntry]:
        """Entries in period order, bounds inclusive."""

    @abstractmethod
    def replace(self, business_id: str, entries: Sequence[LedgerEntry]) -> None:
        """
        Replace the stored entries for the given periods atomically.

        Raises ClosedPeriodError if any of those periods is closed.
        """

    @abstractmethod
    def discard(self, business_id: str, periods: Sequence[Period]) -> None:
        """Remove open entries (undoes a replace that created them)."""

    @abstractmethod
    def close(self, business_id: str, period: Period) -> LedgerEntry:
        """Freeze a period once its return is filed."""


class AlertStore(ABC):
    @abstractmethod
    def list_active(self, business_id: str) -> list[Alert]:
        """Unread alerts."""

    @abstractmethod
    def list_all(self, business_id: str) -> list[Alert]: ...

    @abstractmethod
    def create(self, alerts: Sequence[Alert]) -> list[Alert]:
        """
        Store new alerts and return them with ids assigned.

        An alert whose (business, type, subject) already has an unread
        alert is skipped and left out of the result.
        """

    @abstractmethod
    def mark_sent(self, alert_ids: Sequence[UUID]) -> None: ...


class AlertNotifier(ABC):
    """Outbound transport (email, SMS, push)."""

    @abstractmethod
    def send(self, alert: Alert) -> None:
        """Deliver one alert; raise on failure."""
