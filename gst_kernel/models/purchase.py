"""
Module: gst_kernel.models.purchase
Responsibility: ORM persistence for recorded inbound invoices and their
    reconciliation state.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Exactly one of (cgst + sgst) or igst is non-zero (checked by the
      TaxBreakdown DTO at the store boundary, not by the database).
    - period_code is derived from invoice_date on write and indexed with
      business_id for per-period loads.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from gst_kernel.db.base import TrackedBase


class PurchaseModel(TrackedBase):
    """A purchase invoice row."""

    __tablename__ = "purchases"

    __table_args__ = (
        Index("idx_purchase_business_period", "business_id", "period_code"),
        Index("idx_purchase_vendor_invoice", "vendor_ref", "invoice_number"),
    )

    business_id: Mapped[str] = mapped_column(String(64), nullable=False)
    vendor_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    period_code: Mapped[str] = mapped_column(String(7), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")

    gross_amount: Mapped[Decimal] = mapped_column(nullable=False)
    cgst: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    sgst: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    igst: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    itc_eligible: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    itc_blocked: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    reconciliation_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )
    manual_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    credit_block_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<PurchaseModel {self.vendor_ref}/{self.invoice_number} "
            f"{self.period_code}: {self.reconciliation_status}>"
        )
