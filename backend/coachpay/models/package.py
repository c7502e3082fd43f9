"""Package template model: catalog entries mapped to Stripe lookup keys."""

import uuid

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from coachpay.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class PackageTemplate(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A sellable package. Owned by catalog management; read-only for billing."""

    __tablename__ = "package_templates"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    stripe_lookup_key: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True, index=True)
    duration: Mapped[str] = mapped_column(String(50), nullable=False, default="MONTHLY")  # MONTHLY, YEARLY, ONE_TIME
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    trainer_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<PackageTemplate id={self.id} name={self.name!r} lookup_key={self.stripe_lookup_key!r}>"
