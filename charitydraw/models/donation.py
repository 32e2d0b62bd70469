"""Charity donation ledger."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    func,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column

from .base import ID_TYPE, Base

DONATION_SOURCES = ("prize_split", "direct", "subscription")


class Donation(Base):
    """Money owed to a charity.

    Rows with source ``"prize_split"`` are written by winner settlement, one
    per settled :class:`~charitydraw.models.winner.WinnerRecord`.
    """

    __tablename__ = "donations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    charity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    subscriber_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("subscribers.id", ondelete="SET NULL"), nullable=True
    )
    draw_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("draws.id", ondelete="SET NULL"), nullable=True
    )
    winner_record_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("winner_records.id", ondelete="SET NULL"),
        unique=True,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(
            "source IN ('prize_split','direct','subscription')", name="donation_source_enum"
        ),
        CheckConstraint("amount > 0", name="donation_amount_positive"),
    )

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<Donation(id={self.id}, charity_id='{self.charity_id}', amount={self.amount}, "
            f"source='{self.source}', winner_record_id={self.winner_record_id})>"
        )

    @classmethod
    def total_for_charity(cls, session: Session, charity_id: str) -> int:
        """Sum of all donations recorded for ``charity_id`` in minor units."""
        stmt = select(func.coalesce(func.sum(cls.amount), 0)).where(
            cls.charity_id == charity_id
        )
        return int(session.scalar(stmt) or 0)


__all__ = ["DONATION_SOURCES", "Donation"]
