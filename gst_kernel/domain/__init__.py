"""
Pure domain layer.

This module contains pure data transfer objects and value objects
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (except the injectable Clock abstraction)
- I/O

All domain objects are immutable and deterministic.
"""

from gst_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from gst_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from gst_kernel.domain.dtos import (
    Alert,
    AlertAction,
    AlertDelta,
    AlertFilter,
    AlertType,
    BlockedCreditRule,
    CounterpartyRecord,
    FilingDeadline,
    LedgerEntry,
    MatchNote,
    PaymentDue,
    Purchase,
    PurchaseCategory,
    PurchaseUpdate,
    ReconciliationStatus,
    RunError,
    RunStatus,
    RunSummary,
    invoice_key,
)
from gst_kernel.domain.period import Period
from gst_kernel.domain.values import Currency, Money, TaxBreakdown, sum_money

__all__ = [
    "Alert",
    "AlertAction",
    "AlertDelta",
    "AlertFilter",
    "AlertType",
    "BlockedCreditRule",
    "Clock",
    "CounterpartyRecord",
    "Currency",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DeterministicClock",
    "FilingDeadline",
    "LedgerEntry",
    "MatchNote",
    "Money",
    "PaymentDue",
    "Period",
    "Purchase",
    "PurchaseCategory",
    "PurchaseUpdate",
    "ReconciliationStatus",
    "RunError",
    "RunStatus",
    "RunSummary",
    "SystemClock",
    "TaxBreakdown",
    "invoice_key",
    "sum_money",
]
