from __future__ import annotations

import os
import tempfile
import threading
import time
import unittest
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from unittest.mock import patch

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from charitydraw.billing.reconciler import BillingReconciler, _SUBSCRIBER_LOCKS, _subscriber_lock
from charitydraw.billing.snapshot import BillingSnapshot
from charitydraw.db.engine import get_sessionmaker, make_engine
from charitydraw.errors import ConfigurationError, NotFound, SyncUnavailable
from charitydraw.models import ActivityLog, Base, Subscriber, Subscription


def make_snapshot(status: str = "active", plan: str = "monthly", sub_id: str = "sub_1"):
    return BillingSnapshot(
        customer_ref="cus_1",
        external_subscription_id=sub_id,
        status=status,
        plan=plan,
        current_period_start=datetime(2026, 10, 1, tzinfo=timezone.utc),
        current_period_end=datetime(2026, 11, 1, tzinfo=timezone.utc),
        cancel_at_period_end=False,
    )


class FakeBillingClient:
    """Stands in for :class:`BillingClient`; records every lookup."""

    def __init__(self, snapshot: Optional[BillingSnapshot] = None, exc: Exception = None):
        self.snapshot = snapshot
        self.exc = exc
        self.calls = []

    def latest_subscription(self, customer_ref):
        self.calls.append(customer_ref)
        if self.exc is not None:
            raise self.exc
        return self.snapshot


class BillingReconcilerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine("sqlite+pysqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)

    def tearDown(self) -> None:
        self.engine.dispose()

    def _subscriber(self, session, ref: Optional[str] = "cus_1", email="member@example.com"):
        subscriber = Subscriber(email, billing_customer_ref=ref)
        session.add(subscriber)
        session.flush()
        return subscriber

    def test_first_reconcile_fetches_and_caches(self) -> None:
        with self.Session.begin() as session:
            subscriber = self._subscriber(session)
            client = FakeBillingClient(make_snapshot())
            result = BillingReconciler(session, client=client).reconcile(subscriber.id)

            self.assertEqual(client.calls, ["cus_1"])
            self.assertEqual(result.source, "billing")
            self.assertTrue(result.synced)
            self.assertTrue(result.is_active)
            self.assertIsInstance(result.subscription, Subscription)
            self.assertEqual(result.subscription.external_subscription_id, "sub_1")
            self.assertEqual(subscriber.plan, "monthly")
            self.assertIsNotNone(subscriber.last_reconciled_at)
            self.assertEqual(
                session.scalar(
                    select(func.count(ActivityLog.id)).where(
                        ActivityLog.action_type == "subscription_synced"
                    )
                ),
                1,
            )

    def test_cache_hit_makes_no_external_call(self) -> None:
        with self.Session.begin() as session:
            subscriber = self._subscriber(session)
            BillingReconciler(session, client=FakeBillingClient(make_snapshot())).reconcile(
                subscriber.id
            )

            client = FakeBillingClient(make_snapshot(status="canceled"))
            result = BillingReconciler(session, client=client).reconcile(subscriber.id)
            self.assertEqual(client.calls, [])
            self.assertEqual(result.source, "database")
            self.assertEqual(result.status, "active")

    def test_cache_hit_needs_no_billing_configuration(self) -> None:
        with self.Session.begin() as session:
            subscriber = self._subscriber(session)
            BillingReconciler(session, client=FakeBillingClient(make_snapshot())).reconcile(
                subscriber.id
            )
            with patch("charitydraw.config.load_dotenv"), patch.dict(os.environ, {}, clear=True):
                reconciler = BillingReconciler(session)
                self.assertEqual(reconciler.reconcile(subscriber.id).source, "database")
                with self.assertRaises(ConfigurationError):
                    reconciler.reconcile(subscriber.id, force=True)

    def test_force_refreshes_and_keeps_status_verbatim(self) -> None:
        with self.Session.begin() as session:
            subscriber = self._subscriber(session)
            BillingReconciler(session, client=FakeBillingClient(make_snapshot())).reconcile(
                subscriber.id
            )
            client = FakeBillingClient(make_snapshot(status="past_due", sub_id="sub_2"))
            result = BillingReconciler(session, client=client).reconcile(
                subscriber.id, force=True
            )

            self.assertEqual(len(client.calls), 1)
            self.assertEqual(result.status, "past_due")
            self.assertFalse(result.is_active)
            self.assertEqual(result.subscription.plan, "monthly")
            self.assertEqual(result.subscription.external_subscription_id, "sub_2")
            self.assertEqual(subscriber.plan, "none")
            self.assertEqual(session.scalar(select(func.count(Subscription.id))), 1)

    def test_annual_plan_summary(self) -> None:
        with self.Session.begin() as session:
            subscriber = self._subscriber(session)
            client = FakeBillingClient(make_snapshot(status="trialing", plan="annual"))
            BillingReconciler(session, client=client).reconcile(subscriber.id)
            self.assertEqual(subscriber.plan, "annual")
            self.assertTrue(subscriber.is_eligible)

    def test_force_with_no_billing_subscription_clears_cache(self) -> None:
        with self.Session.begin() as session:
            subscriber = self._subscriber(session)
            BillingReconciler(session, client=FakeBillingClient(make_snapshot())).reconcile(
                subscriber.id
            )
            result = BillingReconciler(session, client=FakeBillingClient(None)).reconcile(
                subscriber.id, force=True
            )

            self.assertIsNone(result.subscription)
            self.assertEqual(result.status, "none")
            self.assertTrue(result.synced)
            self.assertIsNone(Subscription.for_subscriber(session, subscriber.id))
            self.assertEqual(subscriber.plan, "none")
            self.assertEqual(subscriber.subscription_status, "none")

    def test_no_billing_subscription_without_force_leaves_nothing(self) -> None:
        with self.Session.begin() as session:
            subscriber = self._subscriber(session)
            client = FakeBillingClient(None)
            result = BillingReconciler(session, client=client).reconcile(subscriber.id)
            self.assertIsNone(result.subscription)
            self.assertIsNone(result.source)
            self.assertEqual(client.calls, ["cus_1"])

    def test_subscriber_without_customer_ref(self) -> None:
        with self.Session.begin() as session:
            subscriber = self._subscriber(session, ref=None)

            def _factory():
                raise AssertionError("billing client must not be built")

            result = BillingReconciler(session, client_factory=_factory).reconcile(subscriber.id)
            self.assertIsNone(result.subscription)
            self.assertEqual(result.message, "Subscriber has no billing customer")

    def test_unknown_subscriber(self) -> None:
        with self.Session.begin() as session:
            with self.assertRaises(NotFound):
                BillingReconciler(session, client=FakeBillingClient()).reconcile(404)

    def test_unreachable_billing_keeps_cache(self) -> None:
        with self.Session.begin() as session:
            subscriber = self._subscriber(session)
            BillingReconciler(session, client=FakeBillingClient(make_snapshot())).reconcile(
                subscriber.id
            )
            client = FakeBillingClient(exc=SyncUnavailable("timed out"))
            reconciler = BillingReconciler(session, client=client)
            with self.assertRaises(SyncUnavailable):
                reconciler.reconcile(subscriber.id, force=True)
            cached = reconciler.cached_subscription(subscriber.id)
            self.assertEqual(cached.status, "active")
            self.assertEqual(subscriber.plan, "monthly")

    def test_persistence_conflict_returns_best_effort_result(self) -> None:
        with self.Session.begin() as session:
            subscriber = self._subscriber(session)
            conflict = IntegrityError("INSERT INTO subscriptions", {}, Exception("duplicate"))
            reconciler = BillingReconciler(
                session, client=FakeBillingClient(make_snapshot()), max_attempts=2
            )
            with patch.object(
                BillingReconciler, "_apply_snapshot", side_effect=conflict
            ) as mock_apply:
                with self.assertLogs("charitydraw.billing.reconciler", level="WARNING"):
                    result = reconciler.reconcile(subscriber.id)

            self.assertEqual(mock_apply.call_count, 2)
            self.assertFalse(result.synced)
            self.assertIsInstance(result.subscription, BillingSnapshot)
            self.assertEqual(result.status, "active")
            self.assertIn("duplicate", result.error)
            self.assertIsNone(Subscription.for_subscriber(session, subscriber.id))

    def test_sync_all_report(self) -> None:
        with self.Session.begin() as session:
            self._subscriber(session, ref="cus_1", email="a@example.com")
            self._subscriber(session, ref="cus_2", email="b@example.com")
            self._subscriber(session, ref="cus_3", email="c@example.com")
            self._subscriber(session, ref=None, email="d@example.com")

            class RoutingClient(FakeBillingClient):
                def latest_subscription(self, customer_ref):
                    self.calls.append(customer_ref)
                    if customer_ref == "cus_2":
                        return None
                    if customer_ref == "cus_3":
                        raise SyncUnavailable("timed out")
                    return make_snapshot()

            client = RoutingClient()
            report = BillingReconciler(session, client=client).sync_all()

            self.assertEqual(client.calls, ["cus_1", "cus_2", "cus_3"])
            self.assertEqual((report.synced, report.skipped, report.errors), (1, 1, 1))
            self.assertEqual(len(report.details), 3)



class SlowBillingClient:
    """Billing client that sleeps during each lookup and tracks overlap."""

    def __init__(self, delay: float = 0.2):
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.peak = 0
        self._guard = threading.Lock()

    def latest_subscription(self, customer_ref):
        with self._guard:
            self.calls.append(customer_ref)
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            time.sleep(self.delay)
        finally:
            with self._guard:
                self.in_flight -= 1
        return None


class SubscriberLockTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self.tmpdir.name) / "reconcile.db"
        self.engine = make_engine(f"sqlite+pysqlite:///{db_path}")
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)
        with self.Session.begin() as session:
            first = Subscriber("first@example.com", billing_customer_ref="cus_1")
            second = Subscriber("second@example.com", billing_customer_ref="cus_2")
            session.add_all([first, second])
            session.flush()
            self.subscriber_ids = [first.id, second.id]

    def tearDown(self) -> None:
        self.engine.dispose()
        self.tmpdir.cleanup()

    def _reconcile_concurrently(self, subscriber_ids, client):
        barrier = threading.Barrier(len(subscriber_ids))
        errors = []

        def worker(subscriber_id):
            try:
                barrier.wait()
                with self.Session() as session:
                    BillingReconciler(session, client=client).reconcile(subscriber_id)
            except Exception as exc:  # surfaced through the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(sid,)) for sid in subscriber_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)
        self.assertEqual(errors, [])

    def test_same_subscriber_fetches_one_at_a_time(self) -> None:
        client = SlowBillingClient(delay=0.1)
        subscriber_id = self.subscriber_ids[0]

        self._reconcile_concurrently([subscriber_id] * 3, client)

        self.assertEqual(client.calls, ["cus_1"] * 3)
        self.assertEqual(client.peak, 1)
        self.assertNotIn(subscriber_id, _SUBSCRIBER_LOCKS)

    def test_different_subscribers_fetch_in_parallel(self) -> None:
        client = SlowBillingClient(delay=0.3)

        self._reconcile_concurrently(self.subscriber_ids, client)

        self.assertEqual(sorted(client.calls), ["cus_1", "cus_2"])
        self.assertEqual(client.peak, 2)
        for subscriber_id in self.subscriber_ids:
            self.assertNotIn(subscriber_id, _SUBSCRIBER_LOCKS)

    def test_waiting_past_the_timeout_raises_sync_unavailable(self) -> None:
        subscriber_id = self.subscriber_ids[0]
        client = SlowBillingClient(delay=0)

        with patch("charitydraw.billing.reconciler.LOCK_TIMEOUT_SECONDS", 0.05):
            with _subscriber_lock(subscriber_id):
                with self.Session() as session:
                    with self.assertRaises(SyncUnavailable):
                        BillingReconciler(session, client=client).reconcile(
                            subscriber_id, force=True
                        )

        self.assertEqual(client.calls, [])
        self.assertNotIn(subscriber_id, _SUBSCRIBER_LOCKS)

    def test_released_locks_leave_no_registry_entries(self) -> None:
        with _subscriber_lock(self.subscriber_ids[0]):
            self.assertIn(self.subscriber_ids[0], _SUBSCRIBER_LOCKS)
        self.assertNotIn(self.subscriber_ids[0], _SUBSCRIBER_LOCKS)


if __name__ == "__main__":
    unittest.main()
