"""Monthly draws and the entries submitted for them."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Mapping, Optional, Sequence

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship, validates

from ..money import DEFAULT_CHARITY_SPLIT, SplitLike, bps_to_fraction, fraction_to_bps
from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .subscriber import Subscriber
    from .winner import WinnerRecord

DRAW_STATUSES = ("scheduled", "drawn", "published")
DEFAULT_NUMBER_COUNT = 5
SCORE_MIN = 1
SCORE_MAX = 45


def normalize_tier_shares(tier_shares: Mapping[int, int]) -> dict[int, int]:
    """Return ``tier_shares`` with integer keys, rejecting malformed values."""
    normalized: dict[int, int] = {}
    for raw_tier, raw_share in tier_shares.items():
        tier = int(raw_tier)
        if tier < 1:
            raise ValueError(f"tier numbers start at 1, got {raw_tier!r}")
        if isinstance(raw_share, bool) or not isinstance(raw_share, int):
            raise TypeError(f"share for tier {tier} must be an integer amount in minor units")
        if raw_share < 0:
            raise ValueError(f"share for tier {tier} must not be negative")
        if tier in normalized:
            raise ValueError(f"tier {tier} is configured twice")
        normalized[tier] = raw_share
    return normalized


class Draw(Base):
    """A draw cycle: its prize configuration and, once drawn, its winning numbers.

    Lifecycle is ``scheduled -> drawn -> published``; a published draw no longer
    accepts changes to its numbers or prize configuration.
    """

    __tablename__ = "draws"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    label: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    """Month/year label such as ``"2026-10"``."""

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")
    number_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_NUMBER_COUNT
    )
    winning_numbers: Mapped[Optional[list[int]]] = mapped_column(JSON, nullable=True)
    prize_pool: Mapped[int] = mapped_column(Integer, nullable=False)
    """Total prize pool in minor units."""

    _tier_shares: Mapped[dict] = mapped_column("tier_shares", JSON, nullable=False)
    charity_split_bps: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    jackpot_carryover: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Carryover already folded into ``prize_pool``; kept for reporting only."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    drawn_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    winners_computed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    """Set exactly once by the settlement engine when winner rows are written."""

    entries: Mapped[list["Entry"]] = relationship(
        back_populates="draw",
        cascade="all, delete-orphan",
        order_by="Entry.id",
    )
    winners: Mapped[list["WinnerRecord"]] = relationship(
        back_populates="draw",
        order_by="WinnerRecord.id",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('scheduled','drawn','published')", name="draw_status_enum"
        ),
        CheckConstraint("prize_pool >= 0", name="prize_pool_non_negative"),
        CheckConstraint(
            "charity_split_bps >= 0 AND charity_split_bps <= 10000",
            name="charity_split_range",
        ),
    )

    def __init__(
        self,
        *,
        label: str,
        prize_pool: int,
        tier_shares: Mapping[int, int],
        charity_split: SplitLike = DEFAULT_CHARITY_SPLIT,
        number_count: int = DEFAULT_NUMBER_COUNT,
        jackpot_carryover: int = 0,
        winning_numbers: Optional[Sequence[int]] = None,
        status: str = "scheduled",
        id: Optional[int] = None,
    ) -> None:
        if id is not None:
            self.id = id
        self.label = label
        self.number_count = number_count
        self.prize_pool = prize_pool
        self.tier_shares = tier_shares
        self.charity_split = charity_split
        self.jackpot_carryover = jackpot_carryover
        if winning_numbers is not None:
            self.winning_numbers = list(winning_numbers)
        self.status = status
        self.validate_configuration()

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Draw(id={id}, label={label}, status={status}, prize_pool={pool})>".format(
            id=self.id,
            label=self.label,
            status=self.status,
            pool=self.prize_pool,
        )

    @property
    def tier_shares(self) -> dict[int, int]:
        """Prize-pool share per tier (tier 1 = all numbers matched)."""
        return {int(tier): int(share) for tier, share in (self._tier_shares or {}).items()}

    @tier_shares.setter
    def tier_shares(self, value: Mapping[int, int]) -> None:
        normalized = normalize_tier_shares(value)
        # JSON object keys are strings; keep them sorted for stable storage.
        self._tier_shares = {str(tier): normalized[tier] for tier in sorted(normalized)}

    @property
    def charity_split(self) -> Decimal:
        return bps_to_fraction(self.charity_split_bps)

    @charity_split.setter
    def charity_split(self, value: SplitLike) -> None:
        self.charity_split_bps = fraction_to_bps(value)

    def required_matches(self, tier: int) -> int:
        """Number of matching numbers an entry needs to land in ``tier``."""
        return self.number_count - tier + 1

    def tier_for_matches(self, match_count: int) -> Optional[int]:
        """Return the configured tier for ``match_count`` or ``None``."""
        if match_count <= 0:
            return None
        tier = self.number_count - match_count + 1
        if tier < 1 or tier not in self.tier_shares:
            return None
        return tier

    def validate_configuration(self) -> None:
        """Raise :class:`ValueError` if the prize configuration is inconsistent."""
        if isinstance(self.prize_pool, bool) or not isinstance(self.prize_pool, int):
            raise TypeError("prize_pool must be an integer amount in minor units")
        if self.prize_pool < 0:
            raise ValueError("prize_pool must not be negative")
        if self.number_count is None or self.number_count < 1:
            raise ValueError("number_count must be positive")
        shares = self.tier_shares
        if sum(shares.values()) > self.prize_pool:
            raise ValueError(
                f"tier shares total {sum(shares.values())} exceeds prize pool {self.prize_pool}"
            )
        for tier in shares:
            if tier > self.number_count:
                raise ValueError(
                    f"tier {tier} would need {self.required_matches(tier)} matches"
                )
        if self.winning_numbers is not None:
            validate_numbers(
                self.winning_numbers, count=self.number_count, distinct=True
            )

    @validates("winning_numbers", "prize_pool", "_tier_shares", "charity_split_bps", "number_count")
    def _reject_published_edits(self, key: str, value):
        if self.status == "published":
            raise ValueError(f"Draw {self.label!r} is published; '{key}' is immutable")
        return value

    @validates("status")
    def _check_status(self, _key: str, value: str) -> str:
        if value not in DRAW_STATUSES:
            raise ValueError(f"Unknown draw status '{value}'")
        return value

    @classmethod
    def get_by_label(cls, session: Session, label: str) -> Optional["Draw"]:
        return session.scalar(select(cls).where(cls.label == label))


def validate_numbers(
    numbers: Sequence[int],
    *,
    count: int,
    distinct: bool = False,
    low: int = SCORE_MIN,
    high: int = SCORE_MAX,
) -> list[int]:
    """Check a list of draw numbers/scores and return it as a plain list."""
    values = list(numbers)
    if len(values) != count:
        raise ValueError(f"expected {count} numbers, got {len(values)}")
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"number {value!r} is not an integer")
        if value < low or value > high:
            raise ValueError(f"number {value} is outside {low}..{high}")
    if distinct and len(set(values)) != len(values):
        raise ValueError("winning numbers must be distinct")
    return values


class Entry(Base):
    """A subscriber's numbers for one draw."""

    __tablename__ = "entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    draw_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("draws.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subscriber_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("subscribers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    numbers: Mapped[list[int]] = mapped_column(JSON, nullable=False)
    charity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    """Charity selected by the subscriber when the entry was submitted."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    draw: Mapped["Draw"] = relationship(back_populates="entries")
    subscriber: Mapped["Subscriber"] = relationship(back_populates="entries")

    __table_args__ = (
        UniqueConstraint("draw_id", "subscriber_id", name="uq_entry_per_draw"),
    )

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<Entry(id={self.id}, draw_id={self.draw_id}, subscriber_id={self.subscriber_id}, numbers={self.numbers})>"


__all__ = [
    "DEFAULT_NUMBER_COUNT",
    "DRAW_STATUSES",
    "Draw",
    "Entry",
    "SCORE_MAX",
    "SCORE_MIN",
    "normalize_tier_shares",
    "validate_numbers",
]
