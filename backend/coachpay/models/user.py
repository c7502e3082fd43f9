"""User model: clients and trainers with their Stripe linkage."""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coachpay.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A marketplace account. Trainers may own a Stripe Connect account."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(50), default="client", nullable=False)  # client, trainer, admin
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Stripe identifiers
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    stripe_connected_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Relationships
    team_memberships: Mapped[list["TeamMembership"]] = relationship(  # type: ignore[name-defined]  # noqa: F821
        "TeamMembership",
        back_populates="user",
        lazy="selectin",
        order_by="TeamMembership.created_at",
    )

    @property
    def display_name(self) -> str:
        """Name used in customer-facing emails."""
        return self.first_name or self.name or self.email

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"
