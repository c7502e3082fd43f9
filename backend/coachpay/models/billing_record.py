"""Billing record model: one row per Stripe invoice outcome."""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from coachpay.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class BillingRecord(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Audit trail of charges. Unique per (invoice, status) so redelivery is harmless."""

    __tablename__ = "billing_records"
    __table_args__ = (
        UniqueConstraint("stripe_invoice_id", "status", name="uq_billing_record_invoice_status"),
    )

    subscription_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # minor units
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # SUCCEEDED, FAILED
    stripe_invoice_id: Mapped[str] = mapped_column(String(255), nullable=False)
    period_start: Mapped[datetime | None] = mapped_column(nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<BillingRecord invoice={self.stripe_invoice_id} status={self.status} amount={self.amount}>"
