from datetime import datetime, timedelta, timezone

from charitydraw.db.engine import get_sessionmaker, make_engine
from charitydraw.models import Admin, Base, Subscriber, Subscription
from charitydraw.settlement.pool import calculate_prize_pool
from charitydraw.workflows import open_draw, submit_entry

SUBSCRIBERS = [
    ("alice@example.com", "Alice", "cus_dev_alice", "monthly", "charity-ocean", [3, 7, 12, 30, 41]),
    ("bob@example.com", "Bob", "cus_dev_bob", "annual", "charity-forest", [3, 7, 12, 22, 45]),
    ("carol@example.com", "Carol", "cus_dev_carol", "monthly", "charity-ocean", [1, 7, 18, 30, 44]),
    ("dan@example.com", "Dan", None, "none", None, None),
]


def main() -> None:
    """Reset the development database and seed one open draw with entries."""
    engine = make_engine()

    # Tables drop in reverse dependency order; the ledger has no FK cycles.
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    Session = get_sessionmaker(engine)
    now = datetime.now(timezone.utc)

    with Session.begin() as session:
        session.add(Admin(email="admin@example.com", name="Draw Admin", role="superuser"))

        subscribers = []
        for email, name, ref, plan, charity, numbers in SUBSCRIBERS:
            subscriber = Subscriber(
                email,
                full_name=name,
                billing_customer_ref=ref,
                plan=plan,
                charity_id=charity,
            )
            if plan != "none":
                subscriber.subscription = Subscription(
                    customer_ref=ref,
                    external_subscription_id=f"sub_dev_{name.lower()}",
                    status="active",
                    plan=plan,
                    current_period_start=now,
                    current_period_end=now + timedelta(days=365 if plan == "annual" else 30),
                    cancel_at_period_end=False,
                    synced_at=now,
                )
            session.add(subscriber)
            subscribers.append((subscriber, numbers))
        session.flush()

        active = sum(1 for subscriber, _ in subscribers if subscriber.is_eligible)
        pool = calculate_prize_pool(active)
        draw = open_draw(
            session,
            now.strftime("%Y-%m"),
            prize_pool=pool.total,
            tier_shares=pool.tier_shares,
        )
        for subscriber, numbers in subscribers:
            if numbers is not None:
                submit_entry(session, draw, subscriber, numbers)

    print(f"Development database seeded: draw {draw.label} with pool {pool.total}.")


if __name__ == "__main__":
    main()
