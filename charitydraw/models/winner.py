"""Winner ledger rows produced by the settlement engine."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    inspect as sa_inspect,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship, validates

from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .draw import Draw, Entry
    from .subscriber import Subscriber

WINNER_STATUSES = ("pending", "verified", "rejected", "settled")
TERMINAL_WINNER_STATUSES = frozenset({"rejected", "settled"})
ALLOWED_TRANSITIONS = {
    "pending": frozenset({"verified", "rejected"}),
    "verified": frozenset({"settled"}),
    "rejected": frozenset(),
    "settled": frozenset(),
}


class WinnerRecord(Base):
    """A prize won by one entry in one tier of a draw.

    Lifecycle: ``pending -> verified | rejected`` and ``verified -> settled``.
    Only the settlement engine changes :attr:`verification_status`, and only
    its ``settle`` step sets :attr:`is_paid`.
    """

    __tablename__ = "winner_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    draw_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("draws.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    subscriber_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("subscribers.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    entry_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("entries.id", ondelete="SET NULL"), nullable=True
    )
    tier: Mapped[int] = mapped_column(Integer, nullable=False)
    match_count: Mapped[int] = mapped_column(Integer, nullable=False)

    gross_prize: Mapped[int] = mapped_column(Integer, nullable=False)
    """Prize before the charity split, in minor units."""

    charity_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    """Charity share, rounded half-up once at computation time."""

    net_payout: Mapped[int] = mapped_column(Integer, nullable=False)
    """``gross_prize - charity_amount``."""

    charity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    verification_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payout_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    verified_by_admin_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("admins.id", ondelete="SET NULL"), nullable=True
    )
    verified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    settled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    draw: Mapped["Draw"] = relationship(back_populates="winners")
    subscriber: Mapped["Subscriber"] = relationship()
    entry: Mapped[Optional["Entry"]] = relationship()

    __table_args__ = (
        UniqueConstraint("draw_id", "subscriber_id", "tier", name="uq_winner_per_tier"),
        CheckConstraint(
            "gross_prize = charity_amount + net_payout", name="prize_split_balances"
        ),
        CheckConstraint(
            "gross_prize >= 0 AND charity_amount >= 0 AND net_payout >= 0",
            name="amounts_non_negative",
        ),
        CheckConstraint(
            "verification_status IN ('pending','verified','rejected','settled')",
            name="verification_status_enum",
        ),
        CheckConstraint(
            "(NOT is_paid AND verification_status != 'settled') OR "
            "(is_paid AND verification_status = 'settled' AND payout_reference IS NOT NULL)",
            name="paid_iff_settled",
        ),
        Index("ix_winner_records_verification_status", "verification_status"),
    )

    @validates("gross_prize", "charity_amount", "net_payout")
    def _freeze_amounts(self, key: str, value: int) -> int:
        # Amounts are fixed when the row is written; editing one of them would
        # break the gross = charity + net balance.
        if sa_inspect(self).has_identity:
            current = getattr(self, key)
            if current is not None and current != value:
                raise ValueError(
                    f"WinnerRecord {self.id} '{key}' is immutable once persisted"
                )
        return value

    @validates("verification_status")
    def _check_transition(self, _key: str, value: str) -> str:
        if value not in WINNER_STATUSES:
            raise ValueError(f"Unknown verification status '{value}'")
        current = self.verification_status
        if sa_inspect(self).has_identity and current is not None and current != value:
            if value not in ALLOWED_TRANSITIONS[current]:
                raise ValueError(
                    f"WinnerRecord {self.id} cannot move from '{current}' to '{value}'"
                )
        return value

    @property
    def is_terminal(self) -> bool:
        return self.verification_status in TERMINAL_WINNER_STATUSES

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            "<WinnerRecord(id={id}, draw_id={draw}, subscriber_id={sub}, tier={tier}, "
            "gross_prize={gross}, status={status}, is_paid={paid})>"
        ).format(
            id=self.id,
            draw=self.draw_id,
            sub=self.subscriber_id,
            tier=self.tier,
            gross=self.gross_prize,
            status=self.verification_status,
            paid=self.is_paid,
        )

    @classmethod
    def for_draw(cls, session: Session, draw_id: int) -> list["WinnerRecord"]:
        """Return the winners of ``draw_id`` ordered by tier, then entry."""
        stmt = (
            select(cls)
            .where(cls.draw_id == draw_id)
            .order_by(cls.tier.asc(), cls.entry_id.asc(), cls.id.asc())
        )
        return list(session.scalars(stmt).all())


__all__ = ["ALLOWED_TRANSITIONS", "TERMINAL_WINNER_STATUSES", "WINNER_STATUSES", "WinnerRecord"]
