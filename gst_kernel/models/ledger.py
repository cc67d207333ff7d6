"""
Module: gst_kernel.models.ledger
Responsibility: ORM persistence for per-period ITC ledger snapshots.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per (business_id, period_code) (uq_itc_ledger_period).
    - closing_balance == opening_balance + itc_from_purchases - itc_utilized
      (checked by the LedgerEntry DTO on every read and write).
    - Rows with is_closed=True are never replaced (enforced by the store).
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gst_kernel.db.base import TrackedBase


class ItcLedgerEntryModel(TrackedBase):
    """A period's credit ledger row."""

    __tablename__ = "itc_ledger"

    __table_args__ = (
        UniqueConstraint("business_id", "period_code", name="uq_itc_ledger_period"),
    )

    business_id: Mapped[str] = mapped_column(String(64), nullable=False)
    period_code: Mapped[str] = mapped_column(String(7), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")

    opening_balance: Mapped[Decimal] = mapped_column(nullable=False)
    itc_from_purchases: Mapped[Decimal] = mapped_column(nullable=False)
    itc_utilized: Mapped[Decimal] = mapped_column(nullable=False)
    closing_balance: Mapped[Decimal] = mapped_column(nullable=False)

    is_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        state = "closed" if self.is_closed else "open"
        return f"<ItcLedgerEntryModel {self.business_id} {self.period_code}: {state}>"
