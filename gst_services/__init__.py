"""
Module: gst_services
Responsibility:
    Imperative shell of the ITC engine: collaborator interfaces, their
    SQLAlchemy implementations, retry, run locking and the reconciliation
    orchestrator.

Architecture position:
    Services -- may import gst_engines, gst_config and gst_kernel.
"""

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
from gst_services.reconciliation_orchestrator import ReconciliationOrchestrator
from gst_services.retry import RetryPolicy, call_with_retry
from gst_services.run_lock import RunLockRegistry

__all__ = [
    "AlertNotifier",
    "AlertStore",
    "CounterpartyStatementSource",
    "FilingDeadlineSource",
    "ItcUtilizationSource",
    "LedgerStore",
    "PaymentDueSource",
    "PurchaseStore",
    "ReconciliationOrchestrator",
    "RetryPolicy",
    "RunLockRegistry",
    "call_with_retry",
]
