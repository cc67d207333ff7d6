"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable records that flow through the reconciliation
    pipeline: Purchase and CounterpartyRecord (matcher input),
    PurchaseUpdate (matcher output), LedgerEntry (ledger output), Alert and
    AlertDelta (alert deriver output), FilingDeadline and PaymentDue
    (collaborator input), and RunSummary (orchestrator output).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies; ``gst_services.stores`` converts ORM rows to
    these DTOs at the persistence boundary.

Invariants enforced:
    - Money value objects for every monetary field (never raw Decimal).
    - Purchase: no negative amounts, gross >= tax total.
    - LedgerEntry: closing == opening + from_purchases - utilized.
    - Category, status, alert type and match note are closed enums.

Data flow:
    Purchase + CounterpartyRecord -> PurchaseUpdate -> LedgerEntry -> AlertDelta
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from uuid import UUID

from gst_kernel.domain.period import Period
from gst_kernel.domain.values import Money, TaxBreakdown
from gst_kernel.exceptions import (
    ConsistencyError,
    GrossBelowTaxError,
    NegativeAmountError,
    UnknownCategoryError,
)


# =============================================================================
# Enums
# =============================================================================


class PurchaseCategory(str, Enum):
    """Closed set of purchase categories."""

    GOODS = "goods"
    SERVICES = "services"
    CAPITAL_GOODS = "capital_goods"
    EXPENSE = "expense"

    @classmethod
    def parse(cls, value: str | PurchaseCategory) -> PurchaseCategory:
        if isinstance(value, PurchaseCategory):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnknownCategoryError(str(value)) from None


class ReconciliationStatus(str, Enum):
    """Counterparty reconciliation status of a purchase."""

    PENDING = "pending"
    MATCHED = "matched"
    MISMATCHED = "mismatched"
    NOT_FOUND = "not_found"

    @property
    def is_problem(self) -> bool:
        """True for statuses that raise a mismatch alert."""
        match self:
            case ReconciliationStatus.MISMATCHED | ReconciliationStatus.NOT_FOUND:
                return True
            case ReconciliationStatus.PENDING | ReconciliationStatus.MATCHED:
                return False

    @property
    def contributes_to_ledger(self) -> bool:
        """True when the purchase's eligible credit is availed in its period."""
        match self:
            case ReconciliationStatus.MATCHED | ReconciliationStatus.MISMATCHED:
                return True
            case ReconciliationStatus.PENDING | ReconciliationStatus.NOT_FOUND:
                return False


class MatchNote(str, Enum):
    """Why the matcher produced a given update."""

    EXACT = "exact"
    WITHIN_TOLERANCE = "within_tolerance"
    AMOUNT_MISMATCH = "amount_mismatch"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"
    MANUAL_OVERRIDE = "manual_override"
    MANUAL_STATUS = "manual_status"
    OVERRIDE_CLEARED = "override_cleared"
    OUT_OF_PERIOD = "out_of_period"


class AlertType(str, Enum):
    """Closed set of alert types."""

    DUE_DATE = "due_date"
    OVERDUE = "overdue"
    MISMATCH = "mismatch"
    PAYMENT_REMINDER = "payment_reminder"


class AlertAction(str, Enum):
    CREATE = "create"
    NOOP = "noop"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


def invoice_key(vendor_ref: str, invoice_number: str) -> tuple[str, str]:
    """Vendor-scoped invoice identity used for counterparty matching."""
    return (vendor_ref.strip(), invoice_number.strip().casefold())


# =============================================================================
# Purchases and counterparty statements
# =============================================================================


@dataclass(frozen=True)
class BlockedCreditRule:
    """A (category, reason) pair whose input tax credit is blocked."""

    category: PurchaseCategory
    reason: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "category", PurchaseCategory.parse(self.category))
        if not self.reason or not self.reason.strip():
            raise ValueError("blocked credit reason cannot be empty")
        object.__setattr__(self, "reason", self.reason.strip().lower())

    def applies_to(self, purchase: Purchase) -> bool:
        return (
            purchase.category == self.category
            and purchase.credit_block_reason is not None
            and purchase.credit_block_reason.strip().lower() == self.reason
        )


@dataclass(frozen=True)
class Purchase:
    """
    A recorded inbound invoice.

    ``itc_eligible + itc_blocked == tax.total`` holds once the purchase has
    been matched; ``manual_override`` marks a sticky human decision that
    automatic runs leave alone.
    """

    id: UUID
    business_id: str
    vendor_ref: str
    invoice_number: str
    invoice_date: date
    category: PurchaseCategory
    gross_amount: Money
    tax: TaxBreakdown
    itc_eligible: Money
    itc_blocked: Money
    status: ReconciliationStatus = ReconciliationStatus.PENDING
    manual_override: bool = False
    credit_block_reason: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "category", PurchaseCategory.parse(self.category))
        object.__setattr__(self, "status", ReconciliationStatus(self.status))
        for name in ("gross_amount", "itc_eligible", "itc_blocked"):
            value = getattr(self, name)
            if value.is_negative:
                raise NegativeAmountError(name, str(value.amount))
        if self.gross_amount < self.tax.total:
            raise GrossBelowTaxError(str(self.gross_amount.amount), str(self.tax.total.amount))

    @property
    def period(self) -> Period:
        return Period.of_date(self.invoice_date)

    @property
    def tax_total(self) -> Money:
        return self.tax.total

    @property
    def key(self) -> tuple[str, str]:
        return invoice_key(self.vendor_ref, self.invoice_number)

    @property
    def is_split_consistent(self) -> bool:
        return self.itc_eligible + self.itc_blocked == self.tax_total


@dataclass(frozen=True)
class CounterpartyRecord:
    """One line of a counterparty-reported statement (GSTR-2B equivalent)."""

    vendor_ref: str
    invoice_number: str
    invoice_date: date
    taxable_value: Money
    tax: TaxBreakdown
    period: Period

    def __post_init__(self) -> None:
        object.__setattr__(self, "period", Period.parse(self.period))
        if self.taxable_value.is_negative:
            raise NegativeAmountError("taxable_value", str(self.taxable_value.amount))

    @property
    def declared_tax(self) -> Money:
        return self.tax.total

    @property
    def key(self) -> tuple[str, str]:
        return invoice_key(self.vendor_ref, self.invoice_number)

    @property
    def ref(self) -> str:
        return f"{self.vendor_ref}/{self.invoice_number}"


@dataclass(frozen=True)
class PurchaseUpdate:
    """
    Outcome of matching one purchase.

    Carries the previous state alongside the new one so the orchestrator
    can tell whether persistence is needed and can restore the purchase if
    a later write in the same run fails. ``manual_override`` of None means
    "leave the flag as it is".
    """

    purchase_id: UUID
    previous_status: ReconciliationStatus
    status: ReconciliationStatus
    previous_itc_eligible: Money
    previous_itc_blocked: Money
    itc_eligible: Money
    itc_blocked: Money
    note: MatchNote
    manual_override: bool | None = None
    previous_manual_override: bool = False
    counterparty: CounterpartyRecord | None = None
    candidate_count: int = 0

    @property
    def is_change(self) -> bool:
        return (
            self.status != self.previous_status
            or self.itc_eligible != self.previous_itc_eligible
            or self.itc_blocked != self.previous_itc_blocked
            or (
                self.manual_override is not None
                and self.manual_override != self.previous_manual_override
            )
        )

    @property
    def enters_problem_status(self) -> bool:
        return self.status.is_problem and not self.previous_status.is_problem

    def reverted(self) -> PurchaseUpdate:
        """The update that restores the purchase to its previous state."""
        return replace(
            self,
            previous_status=self.status,
            status=self.previous_status,
            previous_itc_eligible=self.itc_eligible,
            previous_itc_blocked=self.itc_blocked,
            itc_eligible=self.previous_itc_eligible,
            itc_blocked=self.previous_itc_blocked,
            manual_override=self.previous_manual_override,
            previous_manual_override=(
                self.manual_override
                if self.manual_override is not None
                else self.previous_manual_override
            ),
        )


# =============================================================================
# Ledger
# =============================================================================


@dataclass(frozen=True)
class LedgerEntry:
    """One period's ITC ledger snapshot."""

    period: Period
    opening_balance: Money
    itc_from_purchases: Money
    itc_utilized: Money
    closing_balance: Money
    is_closed: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "period", Period.parse(self.period))
        expected = self.opening_balance + self.itc_from_purchases - self.itc_utilized
        if expected != self.closing_balance:
            raise ConsistencyError(
                f"Ledger entry {self.period.code}: closing {self.closing_balance.amount} "
                f"!= opening + availed - utilized ({expected.amount})"
            )

    def closed(self) -> LedgerEntry:
        return replace(self, is_closed=True)

    def same_amounts(self, other: LedgerEntry) -> bool:
        return (
            self.period == other.period
            and self.opening_balance == other.opening_balance
            and self.itc_from_purchases == other.itc_from_purchases
            and self.itc_utilized == other.itc_utilized
            and self.closing_balance == other.closing_balance
        )


# =============================================================================
# Filings, sales payments and alerts
# =============================================================================


@dataclass(frozen=True)
class FilingDeadline:
    """A return due for a period (supplied by the filing collaborator)."""

    return_type: str
    period: Period
    due_date: date
    filed: bool = False
    tax_amount: Money = field(default_factory=Money.zero)

    def __post_init__(self) -> None:
        object.__setattr__(self, "period", Period.parse(self.period))

    @property
    def subject(self) -> str:
        return f"{self.return_type}:{self.period.code}"


@dataclass(frozen=True)
class PaymentDue:
    """An outstanding sales invoice (supplied by the sales collaborator)."""

    invoice_id: str
    invoice_number: str
    customer_name: str
    amount: Money
    due_date: date
    paid: bool = False


@dataclass(frozen=True)
class Alert:
    """A derived compliance notification."""

    id: UUID | None
    business_id: str
    type: AlertType
    subject: str | None
    title: str
    message: str
    is_read: bool = False
    is_sent: bool = False
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", AlertType(self.type))

    @property
    def dedup_key(self) -> tuple[AlertType, str | None]:
        return (self.type, self.subject)

    @property
    def is_active(self) -> bool:
        return not self.is_read


@dataclass(frozen=True)
class AlertDelta:
    """Decision for one candidate alert condition."""

    action: AlertAction
    alert_type: AlertType
    subject: str | None
    alert: Alert | None = None
    reason: str = ""


@dataclass(frozen=True)
class AlertFilter:
    """Caller-side filter for ``get_alerts``."""

    types: frozenset[AlertType] | None = None
    include_read: bool = False
    subject: str | None = None

    def accepts(self, alert: Alert) -> bool:
        if self.types is not None and alert.type not in self.types:
            return False
        if not self.include_read and alert.is_read:
            return False
        if self.subject is not None and alert.subject != self.subject:
            return False
        return True


# =============================================================================
# Run summary
# =============================================================================


@dataclass(frozen=True)
class RunError:
    code: str
    message: str


@dataclass(frozen=True)
class RunSummary:
    """Result of one reconciliation run."""

    business_id: str
    period: Period
    status: RunStatus
    matched: int = 0
    mismatched: int = 0
    not_found: int = 0
    unchanged: int = 0
    alerts_created: int = 0
    ledger_periods: tuple[Period, ...] = ()
    errors: tuple[RunError, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @classmethod
    def failed(cls, business_id: str, period: Period, error: Exception) -> RunSummary:
        code = getattr(error, "code", type(error).__name__)
        return cls(
            business_id=business_id,
            period=period,
            status=RunStatus.FAILED,
            errors=(RunError(code=code, message=str(error)),),
        )
