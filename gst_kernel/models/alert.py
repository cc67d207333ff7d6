"""
Module: gst_kernel.models.alert
Responsibility: ORM persistence for compliance alerts.
Architecture position: Kernel > Models.  May import from db/base.py only.

The engine only inserts rows and flips is_sent; is_read and deletion belong
to the user-facing collaborator.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from gst_kernel.db.base import Base


class AlertModel(Base):
    """A stored alert."""

    __tablename__ = "alerts"

    __table_args__ = (
        Index("idx_alert_business_type_subject", "business_id", "alert_type", "subject"),
    )

    business_id: Mapped[str] = mapped_column(String(64), nullable=False)
    alert_type: Mapped[str] = mapped_column(String(30), nullable=False)
    subject: Mapped[str | None] = mapped_column(String(100), nullable=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
