"""Pure prize allocation: matching entries to tiers and splitting tier shares."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from ..money import distribute_evenly, split_prize

if TYPE_CHECKING:
    from ..models import Draw, Entry


@dataclass(frozen=True)
class WinnerAllocation:
    """Prize computed for one qualifying entry, before it is persisted.

    Attributes
    ----------
    draw_id : Optional[int]
        Draw the entry belongs to.
    entry_id : int
        Entry that qualified; also the tie-break order for remainders.
    subscriber_id : int
        Owner of the entry.
    tier : int
        Tier won (1 = every number matched).
    match_count : int
        Distinct numbers shared with the winning numbers.
    gross_prize : int
        Share of the tier in minor units.
    charity_amount : int
        ``round_half_up(gross_prize * charity_split)``.
    net_payout : int
        ``gross_prize - charity_amount``.
    charity_id : Optional[str]
        Charity receiving ``charity_amount``.
    """

    draw_id: Optional[int]
    entry_id: int
    subscriber_id: int
    tier: int
    match_count: int
    gross_prize: int
    charity_amount: int
    net_payout: int
    charity_id: Optional[str] = None


@dataclass(frozen=True)
class TierSummary:
    tier: int
    required_matches: int
    share: int
    winner_count: int
    distributed: int

    @property
    def unclaimed(self) -> int:
        return self.share - self.distributed


@dataclass(frozen=True)
class DrawSettlementSummary:
    """Totals for a draw's allocations, used by admin review and reporting."""

    tiers: tuple[TierSummary, ...]
    total_gross: int
    total_charity: int
    total_net: int

    @property
    def unclaimed_total(self) -> int:
        """Amount of configured tier shares with no winner (rollover candidate)."""
        return sum(tier.unclaimed for tier in self.tiers)

    @property
    def winner_count(self) -> int:
        return sum(tier.winner_count for tier in self.tiers)


def match_count(numbers: Iterable[int], winning_numbers: Iterable[int]) -> int:
    """Return how many distinct ``numbers`` appear among ``winning_numbers``.

    Order does not matter and repeated numbers in an entry count once.
    """
    return len(set(numbers) & set(winning_numbers))


def compute_winners(draw: "Draw", entries: Sequence["Entry"]) -> list[WinnerAllocation]:
    """Compute every winning allocation of ``draw`` without touching storage.

    Parameters
    ----------
    draw : Draw
        Draw with winning numbers, tier shares and charity split configured.
    entries : Sequence[Entry]
        Entries submitted for the draw. Every entry needs an ``id``; at most
        one entry per subscriber is accepted.

    Returns
    -------
    list[WinnerAllocation]
        Allocations ordered by tier, then entry id. Tiers without qualifying
        entries produce nothing and their share stays undistributed.

    Notes
    -----
    Each tier share is divided with :func:`~charitydraw.money.distribute_evenly`,
    handing the remainder one unit at a time to the lowest entry ids, so a
    tier's gross prizes always add up to its share. The charity amount is
    rounded half-up first and the net payout derived by subtraction.

    Raises
    ------
    ValueError
        If the draw has no winning numbers, its configuration is inconsistent,
        or the entries are malformed.
    """
    draw.validate_configuration()
    if not draw.winning_numbers:
        raise ValueError(f"Draw {draw.label!r} has no winning numbers yet")

    winning = set(draw.winning_numbers)
    shares = draw.tier_shares
    charity_split: Decimal = draw.charity_split

    qualifying: dict[int, list[tuple["Entry", int]]] = {}
    seen_entries: set[int] = set()
    seen_subscribers: set[int] = set()
    for entry in entries:
        if entry.id is None:
            raise ValueError("Entries must be persisted before computing winners")
        if draw.id is not None and entry.draw_id is not None and entry.draw_id != draw.id:
            raise ValueError(f"Entry {entry.id} belongs to draw {entry.draw_id}, not {draw.id}")
        if entry.id in seen_entries:
            raise ValueError(f"Entry {entry.id} supplied twice")
        if entry.subscriber_id in seen_subscribers:
            raise ValueError(
                f"Subscriber {entry.subscriber_id} has more than one entry in draw {draw.label!r}"
            )
        seen_entries.add(entry.id)
        seen_subscribers.add(entry.subscriber_id)

        matches = match_count(entry.numbers, winning)
        tier = draw.tier_for_matches(matches)
        if tier is None:
            continue
        qualifying.setdefault(tier, []).append((entry, matches))

    allocations: list[WinnerAllocation] = []
    for tier in sorted(qualifying):
        winners = sorted(qualifying[tier], key=lambda item: item[0].id)
        prizes = distribute_evenly(shares[tier], len(winners))
        for (entry, matches), gross_prize in zip(winners, prizes):
            charity_amount, net_payout = split_prize(gross_prize, charity_split)
            allocations.append(
                WinnerAllocation(
                    draw_id=draw.id,
                    entry_id=entry.id,
                    subscriber_id=entry.subscriber_id,
                    tier=tier,
                    match_count=matches,
                    gross_prize=gross_prize,
                    charity_amount=charity_amount,
                    net_payout=net_payout,
                    charity_id=entry.charity_id,
                )
            )
    return allocations


def summarize_allocations(
    draw: "Draw", allocations: Sequence[WinnerAllocation]
) -> DrawSettlementSummary:
    """Aggregate ``allocations`` per configured tier of ``draw``."""
    tiers = []
    for tier, share in sorted(draw.tier_shares.items()):
        in_tier = [a for a in allocations if a.tier == tier]
        tiers.append(
            TierSummary(
                tier=tier,
                required_matches=draw.required_matches(tier),
                share=share,
                winner_count=len(in_tier),
                distributed=sum(a.gross_prize for a in in_tier),
            )
        )
    return DrawSettlementSummary(
        tiers=tuple(tiers),
        total_gross=sum(a.gross_prize for a in allocations),
        total_charity=sum(a.charity_amount for a in allocations),
        total_net=sum(a.net_payout for a in allocations),
    )


__all__ = [
    "DrawSettlementSummary",
    "TierSummary",
    "WinnerAllocation",
    "compute_winners",
    "match_count",
    "summarize_allocations",
]
