"""Team models: trainer teams that can receive payouts on behalf of members."""

import uuid

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coachpay.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Team(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A group of trainers sharing one Stripe Connect payout account."""

    __tablename__ = "teams"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    stripe_connected_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Team id={self.id} name={self.name!r}>"


class TeamMembership(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Links a trainer to a team. A trainer's first team is the oldest membership."""

    __tablename__ = "team_memberships"
    __table_args__ = (UniqueConstraint("team_id", "user_id", name="uq_team_membership"),)

    team_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    team: Mapped[Team] = relationship(lazy="selectin")
    user: Mapped["User"] = relationship(back_populates="team_memberships")  # type: ignore[name-defined]  # noqa: F821
