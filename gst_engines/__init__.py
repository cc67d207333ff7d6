"""
Module: gst_engines
Responsibility:
    Re-exports the pure calculation engines: counterparty matching,
    eligibility, ledger accumulation, alert derivation and late fees.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import gst_kernel.domain, gst_config and sibling engines.
    MUST NOT import gst_services.

Invariants enforced:
    - Engines never call ``datetime.now()`` or ``date.today()``; the
      current time is always an explicit parameter.
    - Decimal-only arithmetic through ``Money``.
    - Identical inputs produce identical outputs.
"""

from gst_engines.alerts import AlertDeriver, derive_alerts
from gst_engines.eligibility import blocked_portion, initial_eligibility, is_blocked
from gst_engines.ledger import LedgerAccumulator, build_ledger, verify_chain
from gst_engines.matching import ItcMatcher, apply_override, clear_override, reconcile
from gst_engines.penalty import LateFeeAssessment, assess_late_fee, daily_late_fee
from gst_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "AlertDeriver",
    "ItcMatcher",
    "LateFeeAssessment",
    "LedgerAccumulator",
    "apply_override",
    "assess_late_fee",
    "blocked_portion",
    "build_ledger",
    "clear_override",
    "compute_input_fingerprint",
    "daily_late_fee",
    "derive_alerts",
    "initial_eligibility",
    "is_blocked",
    "reconcile",
    "traced_engine",
    "verify_chain",
]
