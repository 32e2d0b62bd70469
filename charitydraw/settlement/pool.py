"""Prize-pool sizing and winning-number generation for a draw cycle."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from ..models.draw import SCORE_MAX, SCORE_MIN

DEFAULT_CONTRIBUTION_PER_SUBSCRIBER = 500
"""Minor units of each active subscription that fund the prize pool."""

TIER_POOL_PERCENTAGES = {1: 40, 2: 35, 3: 25}
"""Share of the pool per tier: 5 matches, 4 matches, 3 matches."""


@dataclass(frozen=True)
class PrizePool:
    """Prize pool for one draw, all amounts in minor units."""

    base_pool: int
    carryover: int
    total: int
    tier_shares: dict[int, int]
    contribution_per_subscriber: int


@dataclass(frozen=True)
class DrawPoolAnalysis:
    """Score popularity used to pick winning numbers.

    Attributes
    ----------
    winning_numbers : list[int]
        Least and most popular scores combined, ascending.
    least_popular : list[int]
        Scores with the lowest frequency (lower score wins ties).
    most_popular : list[int]
        Scores with the highest frequency.
    total_entries : int
        Number of valid scores considered.
    frequency : dict[int, int]
        Occurrences per valid score.
    """

    winning_numbers: list[int]
    least_popular: list[int]
    most_popular: list[int]
    total_entries: int
    frequency: dict[int, int] = field(default_factory=dict)

    @property
    def unique_scores(self) -> int:
        return len(self.frequency)


def calculate_prize_pool(
    active_subscribers: int,
    carryover: int = 0,
    *,
    contribution: int = DEFAULT_CONTRIBUTION_PER_SUBSCRIBER,
) -> PrizePool:
    """Size the pool from paying subscribers plus any jackpot carryover.

    Lower tiers get their percentage rounded down and tier 1 receives the
    rest, so the shares add up to ``total`` exactly.
    """
    for name, value in (
        ("active_subscribers", active_subscribers),
        ("carryover", carryover),
        ("contribution", contribution),
    ):
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"{name} must be an integer")
        if value < 0:
            raise ValueError(f"{name} must not be negative")

    base_pool = active_subscribers * contribution
    total = base_pool + carryover
    shares = {
        tier: total * pct // 100
        for tier, pct in TIER_POOL_PERCENTAGES.items()
        if tier != 1
    }
    shares[1] = total - sum(shares.values())
    return PrizePool(
        base_pool=base_pool,
        carryover=carryover,
        total=total,
        tier_shares=dict(sorted(shares.items())),
        contribution_per_subscriber=contribution,
    )


def validate_score(value) -> int:
    """Return ``value`` as a score in ``1..45``.

    Integers and integer strings are accepted; anything else raises
    :class:`ValueError`.
    """
    if isinstance(value, bool):
        raise ValueError("Score must be a number")
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError as exc:
            raise ValueError("Score must be a number") from exc
    if not isinstance(value, int):
        raise ValueError("Score must be a number")
    if value < SCORE_MIN:
        raise ValueError(f"Score must be at least {SCORE_MIN}")
    if value > SCORE_MAX:
        raise ValueError(f"Score cannot exceed {SCORE_MAX}")
    return value


def analyze_draw_pool(
    scores: Iterable[int],
    range_min: int = SCORE_MIN,
    range_max: int = SCORE_MAX,
    *,
    least: int = 3,
    most: int = 2,
) -> DrawPoolAnalysis:
    """Pick winning numbers from the popularity of submitted scores.

    The ``least`` rarest scores and the ``most`` most frequent ones form the
    winning numbers. Scores outside ``range_min..range_max`` are ignored.

    Raises
    ------
    ValueError
        If there are fewer than ``least + most`` distinct valid scores.
    """
    valid = [
        s
        for s in scores
        if isinstance(s, int) and not isinstance(s, bool) and range_min <= s <= range_max
    ]
    if not valid:
        raise ValueError("No valid scores in range")

    frequency = Counter(valid)
    if len(frequency) < least + most:
        raise ValueError(
            f"Need at least {least + most} distinct scores, got {len(frequency)}"
        )

    ranked = sorted(frequency.items(), key=lambda item: (item[1], item[0]))
    least_popular = [score for score, _ in ranked[:least]]
    most_popular = [score for score, _ in ranked[len(ranked) - most :]]
    return DrawPoolAnalysis(
        winning_numbers=sorted(least_popular + most_popular),
        least_popular=least_popular,
        most_popular=most_popular,
        total_entries=len(valid),
        frequency=dict(sorted(frequency.items())),
    )


__all__ = [
    "DEFAULT_CONTRIBUTION_PER_SUBSCRIBER",
    "DrawPoolAnalysis",
    "PrizePool",
    "TIER_POOL_PERCENTAGES",
    "analyze_draw_pool",
    "calculate_prize_pool",
    "validate_score",
]
