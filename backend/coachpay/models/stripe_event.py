"""Processed Stripe event model: webhook delivery de-duplication."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from coachpay.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ProcessedStripeEvent(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Stripe event ids already handled. The unique id makes replays detectable."""

    __tablename__ = "processed_stripe_events"

    stripe_event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)

    def __repr__(self) -> str:
        return f"<ProcessedStripeEvent {self.stripe_event_id} ({self.event_type})>"
