"""
Typed Exception Hierarchy for the GST Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the reconciliation engine need to tell apart bad input (reject,
do not retry), ledger consistency violations (abort the run, surface
diagnostics) and transient collaborator failures (retry with backoff).
Matching on message strings is fragile, so every error has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA attributes (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    GstKernelError (base)
    |
    +-- ValidationError
    |   +-- NegativeAmountError
    |   +-- InvalidTaxSplitError
    |   +-- GrossBelowTaxError
    |   +-- PeriodMismatchError
    |   +-- InvalidPeriodError
    |   +-- InvalidPeriodSequenceError
    |   +-- UnknownCategoryError
    |   +-- PurchaseNotFoundError
    |
    +-- ConsistencyError
    |   +-- UtilizationExceedsBalanceError
    |   +-- ClosedPeriodError
    |   +-- CarryForwardBrokenError
    |
    +-- CollaboratorUnavailableError
    |
    +-- ConcurrencyError
        +-- ReconciliationInProgressError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                          | When Raised
--------------|-------------------------------|-----------------------------------
Validation    | NEGATIVE_AMOUNT               | Amount below zero
              | INVALID_TAX_SPLIT             | CGST/SGST and IGST both non-zero
              | GROSS_BELOW_TAX               | Gross amount < tax total
              | PERIOD_MISMATCH               | Record belongs to another period
              | INVALID_PERIOD                | Unparseable period code
              | INVALID_PERIOD_SEQUENCE       | Periods not strictly increasing
              | UNKNOWN_CATEGORY              | Category outside the closed enum
              | PURCHASE_NOT_FOUND            | No purchase with that id
--------------|-------------------------------|-----------------------------------
Consistency   | UTILIZATION_EXCEEDS_BALANCE   | Closing balance would go negative
              | CLOSED_PERIOD                 | Replacing a filed (closed) period
              | CARRY_FORWARD_BROKEN          | Closed period opening would change
--------------|-------------------------------|-----------------------------------
Collaborator  | COLLABORATOR_UNAVAILABLE      | Store/source call failed (transient)
--------------|-------------------------------|-----------------------------------
Concurrency   | RECONCILIATION_IN_PROGRESS    | Run already in flight for the key

Ambiguous counterparty matches are NOT exceptions: the matcher resolves
them by tie-break and reports ``mismatched`` with an ``ambiguous`` note.

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        summary = orchestrator.run_reconciliation(business_id, period)
    except ReconciliationInProgressError as e:
        return {"error": e.code, "period": e.period_code}

Validation and consistency errors never reach the caller of
``run_reconciliation`` as exceptions -- they are folded into a failed
``RunSummary`` whose ``errors`` carry ``code`` and message.
"""


class GstKernelError(Exception):
    """
    Base exception for all GST kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "GST_KERNEL_ERROR"


# Validation errors


class ValidationError(GstKernelError):
    """Malformed input, rejected before any state change."""

    code: str = "VALIDATION_ERROR"


class NegativeAmountError(ValidationError):
    """A monetary field is negative."""

    code: str = "NEGATIVE_AMOUNT"

    def __init__(self, field_name: str, amount: str):
        self.field_name = field_name
        self.amount = amount
        super().__init__(f"{field_name} cannot be negative: {amount}")


class InvalidTaxSplitError(ValidationError):
    """Intra-state (CGST+SGST) and inter-state (IGST) tax both present."""

    code: str = "INVALID_TAX_SPLIT"

    def __init__(self, cgst: str, sgst: str, igst: str):
        self.cgst = cgst
        self.sgst = sgst
        self.igst = igst
        super().__init__(
            f"Tax must be either CGST+SGST or IGST, not both "
            f"(cgst={cgst}, sgst={sgst}, igst={igst})"
        )


class GrossBelowTaxError(ValidationError):
    """Gross amount is smaller than the sum of its tax components."""

    code: str = "GROSS_BELOW_TAX"

    def __init__(self, gross: str, tax_total: str):
        self.gross = gross
        self.tax_total = tax_total
        super().__init__(f"Gross amount {gross} is below tax total {tax_total}")


class PeriodMismatchError(ValidationError):
    """A record was supplied for a period other than the one being processed."""

    code: str = "PERIOD_MISMATCH"

    def __init__(self, record_ref: str, record_period: str, expected_period: str):
        self.record_ref = record_ref
        self.record_period = record_period
        self.expected_period = expected_period
        super().__init__(
            f"Record {record_ref} belongs to period {record_period}, "
            f"expected {expected_period}"
        )


class InvalidPeriodError(ValidationError):
    """Period code cannot be parsed."""

    code: str = "INVALID_PERIOD"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid period: {value!r}")


class InvalidPeriodSequenceError(ValidationError):
    """Periods handed to the ledger are not strictly increasing."""

    code: str = "INVALID_PERIOD_SEQUENCE"

    def __init__(self, previous: str, current: str):
        self.previous = previous
        self.current = current
        super().__init__(
            f"Periods must be strictly increasing: {current} follows {previous}"
        )


class UnknownCategoryError(ValidationError):
    """Purchase category is outside the closed category set."""

    code: str = "UNKNOWN_CATEGORY"

    def __init__(self, category: str):
        self.category = category
        super().__init__(f"Unknown purchase category: {category!r}")


class PurchaseNotFoundError(ValidationError):
    """No purchase with the given id exists for the business."""

    code: str = "PURCHASE_NOT_FOUND"

    def __init__(self, purchase_id: str):
        self.purchase_id = purchase_id
        super().__init__(f"Purchase not found: {purchase_id}")


# Consistency errors


class ConsistencyError(GstKernelError):
    """The ITC ledger invariant would be violated."""

    code: str = "CONSISTENCY_ERROR"


class UtilizationExceedsBalanceError(ConsistencyError):
    """Credit utilized in a period exceeds the balance available in it."""

    code: str = "UTILIZATION_EXCEEDS_BALANCE"

    def __init__(self, period_code: str, available: str, utilized: str):
        self.period_code = period_code
        self.available = available
        self.utilized = utilized
        super().__init__(
            f"ITC utilized {utilized} exceeds available balance {available} "
            f"in period {period_code}"
        )


class ClosedPeriodError(ConsistencyError):
    """Attempt to replace or reconcile a period whose return is filed."""

    code: str = "CLOSED_PERIOD"

    def __init__(self, period_code: str):
        self.period_code = period_code
        super().__init__(f"Period {period_code} is closed")


class CarryForwardBrokenError(ConsistencyError):
    """Recomputation would change the opening balance of a closed period."""

    code: str = "CARRY_FORWARD_BROKEN"

    def __init__(self, period_code: str, recorded_opening: str, recomputed_opening: str):
        self.period_code = period_code
        self.recorded_opening = recorded_opening
        self.recomputed_opening = recomputed_opening
        super().__init__(
            f"Closed period {period_code} opens at {recorded_opening} but "
            f"recomputation carries forward {recomputed_opening}; "
            f"an adjustment entry is required"
        )


# Collaborator errors


class CollaboratorUnavailableError(GstKernelError):
    """A store or source call failed for a transient reason."""

    code: str = "COLLABORATOR_UNAVAILABLE"

    def __init__(self, collaborator: str, operation: str, detail: str = ""):
        self.collaborator = collaborator
        self.operation = operation
        self.detail = detail
        message = f"{collaborator}.{operation} unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


# Concurrency errors


class ConcurrencyError(GstKernelError):
    """Base exception for concurrency conflicts."""

    code: str = "CONCURRENCY_ERROR"


class ReconciliationInProgressError(ConcurrencyError):
    """Another run already holds the lock for this (business, period)."""

    code: str = "RECONCILIATION_IN_PROGRESS"

    def __init__(self, business_id: str, period_code: str):
        self.business_id = business_id
        self.period_code = period_code
        super().__init__(
            f"Reconciliation already in progress for business {business_id}, "
            f"period {period_code}"
        )
