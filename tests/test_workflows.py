from __future__ import annotations

import unittest

from sqlalchemy import select

from charitydraw.billing.snapshot import BillingSnapshot
from charitydraw.db.engine import get_sessionmaker, make_engine
from charitydraw.errors import InvalidStateTransition, NotFound
from charitydraw.models import ActivityLog, Admin, Base, Donation, Subscriber
from charitydraw.settlement.allocation import WinnerAllocation, summarize_allocations
from charitydraw.settlement.pool import calculate_prize_pool
from charitydraw.workflows import (
    compute_draw_winners,
    open_draw,
    publish_draw,
    reconcile_subscriber,
    record_winning_numbers,
    settle_winner,
    submit_entry,
    sync_all_subscriptions,
    verify_winner,
)


class _StaticClient:
    def __init__(self, snapshot):
        self.snapshot = snapshot
        self.calls = 0

    def latest_subscription(self, customer_ref):
        self.calls += 1
        return self.snapshot


class DrawLifecycleWorkflowTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine("sqlite+pysqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)

    def tearDown(self) -> None:
        self.engine.dispose()

    def _member(self, session, name: str, plan: str = "monthly", charity="charity-ocean"):
        subscriber = Subscriber(f"{name}@example.com", full_name=name, plan=plan, charity_id=charity)
        session.add(subscriber)
        session.flush()
        return subscriber

    def test_full_draw_cycle(self) -> None:
        with self.Session.begin() as session:
            admin = Admin(email="Admin@Example.com")
            session.add(admin)
            members = [self._member(session, name) for name in ("ann", "ben", "cat", "dov")]

            pool = calculate_prize_pool(len(members), carryover=1000)
            draw = open_draw(session, "2026-10", pool.total, pool.tier_shares)
            picks = [
                [1, 2, 3, 4, 5],
                [1, 2, 3, 4, 20],
                [1, 2, 3, 21, 22],
                [30, 31, 32, 33, 34],
            ]
            for member, numbers in zip(members, picks):
                submit_entry(session, draw, member, numbers)

            record_winning_numbers(session, draw.id, [5, 4, 3, 2, 1])
            self.assertEqual(draw.status, "drawn")
            self.assertEqual(draw.winning_numbers, [1, 2, 3, 4, 5])

            winners = compute_draw_winners(session, draw.id)
            self.assertEqual([w.tier for w in winners], [1, 2, 3])
            self.assertEqual(sum(w.gross_prize for w in winners), pool.total)

            for winner in winners:
                verify_winner(session, winner.id, "accept", admin.id)
                settle_winner(session, winner.id, f"PAY-{winner.id}")

            published = publish_draw(session, draw.id)
            self.assertEqual(published.status, "published")
            self.assertIsNotNone(published.published_at)

            expected_charity = sum(w.charity_amount for w in winners)
            self.assertEqual(Donation.total_for_charity(session, "charity-ocean"), expected_charity)

            actions = session.scalars(select(ActivityLog.action_type)).all()
            for action in ("draw_created", "entry_submitted", "draw_drawn",
                           "winners_computed", "winner_verified", "winner_settled",
                           "draw_published"):
                self.assertIn(action, actions)

    def test_summary_reports_rollover(self) -> None:
        with self.Session.begin() as session:
            member = self._member(session, "eve")
            draw = open_draw(session, "2026-10", 10000, {1: 4000, 2: 3500, 3: 2500})
            submit_entry(session, draw, member, [1, 2, 3, 40, 41])
            record_winning_numbers(session, draw.id, [1, 2, 3, 4, 5])
            winners = compute_draw_winners(session, draw.id)
            summary = summarize_allocations(draw, _as_allocations(winners))
            self.assertEqual(summary.winner_count, 1)
            self.assertEqual(summary.unclaimed_total, 7500)

    def test_open_draw_rejects_duplicate_label(self) -> None:
        with self.Session.begin() as session:
            open_draw(session, "2026-10", 100, {1: 100})
            with self.assertRaises(ValueError):
                open_draw(session, "2026-10", 100, {1: 100})

    def test_submit_entry_rules(self) -> None:
        with self.Session.begin() as session:
            draw = open_draw(session, "2026-10", 100, {1: 100})
            member = self._member(session, "fay")
            lapsed = self._member(session, "gus", plan="none")

            with self.assertRaisesRegex(ValueError, "no active plan"):
                submit_entry(session, draw, lapsed, [1, 2, 3, 4, 5])
            with self.assertRaisesRegex(ValueError, "cannot exceed 45"):
                submit_entry(session, draw, member, [1, 2, 3, 4, 50])
            with self.assertRaises(ValueError):
                submit_entry(session, draw, member, [1, 2, 3])

            entry = submit_entry(session, draw, member, ["7", 8, 9, 10, 11])
            self.assertEqual(entry.numbers, [7, 8, 9, 10, 11])
            self.assertEqual(entry.charity_id, "charity-ocean")
            with self.assertRaisesRegex(ValueError, "already entered"):
                submit_entry(session, draw, member, [1, 2, 3, 4, 5])

            record_winning_numbers(session, draw.id, [1, 2, 3, 4, 5])
            late = self._member(session, "hal")
            with self.assertRaises(ValueError):
                submit_entry(session, draw, late, [1, 2, 3, 4, 5])

    def test_winning_numbers_from_entry_popularity(self) -> None:
        with self.Session.begin() as session:
            draw = open_draw(session, "2026-10", 100, {1: 100})
            picks = [
                [1, 2, 3, 4, 5],
                [1, 2, 3, 4, 6],
                [1, 2, 3, 7, 8],
            ]
            for idx, numbers in enumerate(picks):
                submit_entry(session, draw, self._member(session, f"m{idx}"), numbers)

            record_winning_numbers(session, draw.id)
            # 5, 6, 7 are the rarest (lower score wins ties); 1, 2 and 3 tie as most
            # popular and the two highest are taken.
            self.assertEqual(draw.winning_numbers, [2, 3, 5, 6, 7])

    def test_winning_numbers_must_be_distinct(self) -> None:
        with self.Session.begin() as session:
            draw = open_draw(session, "2026-10", 100, {1: 100})
            with self.assertRaises(ValueError):
                record_winning_numbers(session, draw.id, [1, 1, 2, 3, 4])
            self.assertEqual(draw.status, "scheduled")
            self.assertIsNone(draw.winning_numbers)

    def test_publish_rules(self) -> None:
        with self.Session.begin() as session:
            draw = open_draw(session, "2026-10", 100, {1: 100})
            with self.assertRaises(InvalidStateTransition):
                publish_draw(session, draw.id)
            record_winning_numbers(session, draw.id, [1, 2, 3, 4, 5])
            with self.assertRaisesRegex(InvalidStateTransition, "winners have not been computed"):
                publish_draw(session, draw.id)
            compute_draw_winners(session, draw.id)
            publish_draw(session, draw.id)

            with self.assertRaises(InvalidStateTransition) as ctx:
                publish_draw(session, draw.id)
            self.assertTrue(ctx.exception.already_processed)
            with self.assertRaises(ValueError):
                draw.prize_pool = 1
            with self.assertRaises(NotFound):
                publish_draw(session, 999)

    def test_reconcile_workflows(self) -> None:
        snapshot = BillingSnapshot(
            customer_ref="cus_9",
            external_subscription_id="sub_9",
            status="active",
            plan="annual",
            current_period_start=None,
            current_period_end=None,
            cancel_at_period_end=True,
        )
        with self.Session.begin() as session:
            subscriber = Subscriber("ivy@example.com", billing_customer_ref="cus_9")
            session.add(subscriber)
            session.flush()

            client = _StaticClient(snapshot)
            result = reconcile_subscriber(session, subscriber.id, client=client)
            self.assertEqual(result.subscription.plan, "annual")
            self.assertTrue(result.subscription.cancel_at_period_end)
            self.assertEqual(subscriber.plan, "annual")

            reconcile_subscriber(session, subscriber.id, client=client)
            self.assertEqual(client.calls, 1)

            report = sync_all_subscriptions(session, client=client)
            self.assertEqual(report.synced, 1)
            self.assertEqual(client.calls, 2)


def _as_allocations(winners):
    return [
        WinnerAllocation(
            draw_id=w.draw_id,
            entry_id=w.entry_id,
            subscriber_id=w.subscriber_id,
            tier=w.tier,
            match_count=w.match_count,
            gross_prize=w.gross_prize,
            charity_amount=w.charity_amount,
            net_payout=w.net_payout,
            charity_id=w.charity_id,
        )
        for w in winners
    ]


if __name__ == "__main__":
    unittest.main()
