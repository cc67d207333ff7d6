"""
Module: gst_kernel.models.filing
Responsibility: ORM persistence for return filings -- due dates, filing
    status, the ITC claimed (utilized) against output tax, and unpaid tax.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from gst_kernel.db.base import TrackedBase


class FilingReturnModel(TrackedBase):
    """A return (GSTR-1, GSTR-3B, CMP-08, GSTR-9) due for a period."""

    __tablename__ = "filing_returns"

    __table_args__ = (
        Index("idx_filing_business_period", "business_id", "period_code"),
    )

    business_id: Mapped[str] = mapped_column(String(64), nullable=False)
    return_type: Mapped[str] = mapped_column(String(20), nullable=False)
    period_code: Mapped[str] = mapped_column(String(7), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    filed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")

    # Credit applied against output tax liability on this return
    itc_claimed: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    # Tax still payable, used for the interest estimate on late returns
    tax_payable: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    @property
    def is_filed(self) -> bool:
        return self.status == "filed"
