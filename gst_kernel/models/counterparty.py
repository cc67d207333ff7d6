"""
Module: gst_kernel.models.counterparty
Responsibility: ORM persistence for ingested counterparty statement lines
    (the GSTR-2B equivalent).  Rows are written once per period by the
    import collaborator and read-only afterwards.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from gst_kernel.db.base import Base


class CounterpartyRecordModel(Base):
    """One declared invoice line from a supplier's filing."""

    __tablename__ = "counterparty_records"

    __table_args__ = (
        Index("idx_counterparty_business_period", "business_id", "period_code"),
    )

    business_id: Mapped[str] = mapped_column(String(64), nullable=False)
    vendor_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    period_code: Mapped[str] = mapped_column(String(7), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")

    taxable_value: Mapped[Decimal] = mapped_column(nullable=False)
    cgst: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    sgst: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    igst: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
