import unittest

from charitydraw.models import Draw, Entry
from charitydraw.settlement.allocation import (
    compute_winners,
    match_count,
    summarize_allocations,
)


def _draw(**overrides) -> Draw:
    params = dict(
        id=1,
        label="2026-10",
        prize_pool=9000,
        tier_shares={1: 6000},
        charity_split="0.10",
        winning_numbers=[1, 2, 3, 4, 5],
        status="drawn",
    )
    params.update(overrides)
    return Draw(**params)


def _entry(entry_id: int, subscriber_id: int, numbers, charity_id="charity-a") -> Entry:
    return Entry(
        id=entry_id,
        draw_id=1,
        subscriber_id=subscriber_id,
        numbers=list(numbers),
        charity_id=charity_id,
    )


class TestMatchCount(unittest.TestCase):
    def test_order_and_duplicates_ignored(self):
        self.assertEqual(match_count([5, 4, 3, 2, 1], [1, 2, 3, 4, 5]), 5)
        self.assertEqual(match_count([1, 1, 1, 9, 10], [1, 2, 3, 4, 5]), 1)


class TestComputeWinners(unittest.TestCase):
    def test_two_jackpot_winners_share_tier(self):
        draw = _draw()
        entries = [
            _entry(10, 100, [1, 2, 3, 4, 5]),
            _entry(11, 101, [5, 4, 3, 2, 1]),
            _entry(12, 102, [1, 2, 3, 4, 45]),
        ]
        allocations = compute_winners(draw, entries)
        self.assertEqual(len(allocations), 2)
        for allocation in allocations:
            self.assertEqual(allocation.tier, 1)
            self.assertEqual(allocation.gross_prize, 3000)
            self.assertEqual(allocation.charity_amount, 300)
            self.assertEqual(allocation.net_payout, 2700)
            self.assertEqual(allocation.charity_id, "charity-a")

    def test_remainder_goes_to_lowest_entry_ids(self):
        draw = _draw(prize_pool=1000, tier_shares={1: 1000})
        entries = [
            _entry(30, 3, [1, 2, 3, 4, 5]),
            _entry(10, 1, [1, 2, 3, 4, 5]),
            _entry(20, 2, [1, 2, 3, 4, 5]),
        ]
        allocations = compute_winners(draw, entries)
        self.assertEqual([a.entry_id for a in allocations], [10, 20, 30])
        self.assertEqual([a.gross_prize for a in allocations], [334, 333, 333])
        self.assertEqual(sum(a.gross_prize for a in allocations), 1000)

    def test_tiers_map_to_match_counts(self):
        draw = _draw(prize_pool=10000, tier_shares={1: 4000, 2: 3500, 3: 2500})
        entries = [
            _entry(1, 1, [1, 2, 3, 4, 5]),
            _entry(2, 2, [1, 2, 3, 4, 40]),
            _entry(3, 3, [1, 2, 3, 40, 41]),
            _entry(4, 4, [1, 2, 40, 41, 42]),
        ]
        allocations = compute_winners(draw, entries)
        self.assertEqual([(a.entry_id, a.tier, a.match_count) for a in allocations],
                         [(1, 1, 5), (2, 2, 4), (3, 3, 3)])

        summary = summarize_allocations(draw, allocations)
        self.assertEqual(summary.total_gross, 10000)
        self.assertEqual(summary.total_charity + summary.total_net, summary.total_gross)
        self.assertEqual(summary.unclaimed_total, 0)
        self.assertEqual(summary.winner_count, 3)

    def test_tier_sums_equal_shares(self):
        draw = _draw(prize_pool=10007, tier_shares={1: 4001, 2: 3503, 3: 2503},
                     charity_split="0.125")
        entries = []
        for idx in range(1, 12):
            numbers = [1, 2, 3, 4, 5] if idx % 3 == 0 else [1, 2, 3, 4, 30 + idx]
            entries.append(_entry(idx, idx, numbers))
        allocations = compute_winners(draw, entries)
        for tier in (1, 2):
            total = sum(a.gross_prize for a in allocations if a.tier == tier)
            self.assertEqual(total, draw.tier_shares[tier])
        for allocation in allocations:
            self.assertEqual(
                allocation.charity_amount + allocation.net_payout, allocation.gross_prize
            )

    def test_unclaimed_tier_is_reported(self):
        draw = _draw(prize_pool=10000, tier_shares={1: 4000, 2: 3500, 3: 2500})
        allocations = compute_winners(draw, [_entry(1, 1, [1, 2, 3, 40, 41])])
        summary = summarize_allocations(draw, allocations)
        self.assertEqual(summary.unclaimed_total, 7500)
        self.assertEqual(summary.tiers[0].winner_count, 0)
        self.assertEqual(summary.tiers[0].required_matches, 5)

    def test_no_entries(self):
        self.assertEqual(compute_winners(_draw(), []), [])

    def test_zero_charity_split(self):
        draw = _draw(charity_split=0)
        allocation = compute_winners(draw, [_entry(1, 1, [1, 2, 3, 4, 5])])[0]
        self.assertEqual(allocation.charity_amount, 0)
        self.assertEqual(allocation.net_payout, 6000)

    def test_requires_winning_numbers(self):
        draw = _draw(winning_numbers=None, status="scheduled")
        with self.assertRaises(ValueError):
            compute_winners(draw, [])

    def test_rejects_shares_above_pool(self):
        with self.assertRaises(ValueError):
            _draw(prize_pool=100, tier_shares={1: 101})

    def test_rejects_second_entry_for_subscriber(self):
        entries = [_entry(1, 7, [1, 2, 3, 4, 5]), _entry(2, 7, [1, 2, 3, 4, 6])]
        with self.assertRaises(ValueError):
            compute_winners(_draw(), entries)

    def test_rejects_unsaved_entry(self):
        entry = Entry(draw_id=1, subscriber_id=1, numbers=[1, 2, 3, 4, 5])
        with self.assertRaises(ValueError):
            compute_winners(_draw(), [entry])

    def test_is_deterministic(self):
        draw = _draw(prize_pool=1000, tier_shares={1: 1000})
        entries = [_entry(i, i, [1, 2, 3, 4, 5]) for i in (5, 3, 9)]
        self.assertEqual(
            compute_winners(draw, entries), compute_winners(draw, list(reversed(entries)))
        )


if __name__ == "__main__":
    unittest.main()
