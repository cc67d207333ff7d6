"""
Module: gst_kernel.models.sales_invoice
Responsibility: ORM persistence for the slice of outbound invoices the
    payment reminder rule needs: number, customer, due date, amount, status.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from gst_kernel.db.base import Base


class SalesInvoiceModel(Base):
    """An outbound invoice (status: draft, sent, paid, cancelled)."""

    __tablename__ = "sales_invoices"

    __table_args__ = (
        Index("idx_sales_invoice_business_due", "business_id", "due_date"),
    )

    business_id: Mapped[str] = mapped_column(String(64), nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
