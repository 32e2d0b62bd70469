from datetime import datetime, timezone
import logging
from typing import TYPE_CHECKING, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from .billing.reconciler import BillingReconciler, ReconcileResult, SyncReport
from .errors import InvalidStateTransition, NotFound
from .models import ActivityLog, Draw, Entry, Subscriber, WinnerRecord
from .models.draw import validate_numbers
from .money import DEFAULT_CHARITY_SPLIT, SplitLike, format_minor_units
from .settlement.engine import DrawSettlementEngine
from .settlement.pool import analyze_draw_pool, validate_score

if TYPE_CHECKING:
    from .billing.client import BillingClient

logger = logging.getLogger(__name__)


def open_draw(
    session: Session,
    label: str,
    prize_pool: int,
    tier_shares: Mapping[int, int],
    charity_split: SplitLike = DEFAULT_CHARITY_SPLIT,
    number_count: int = 5,
    jackpot_carryover: int = 0,
) -> Draw:
    """Create a ``scheduled`` draw with its prize configuration.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session used for persistence.
    label : str
        Unique month/year label, e.g. ``"2026-10"``.
    prize_pool : int
        Total prize pool in minor units, carryover included.
    tier_shares : Mapping[int, int]
        Share of ``prize_pool`` per tier; tier 1 requires every number.
    charity_split : SplitLike, default: 0.10
        Fraction of each prize given to the winner's charity.
    number_count : int, default: 5
        Numbers drawn, and numbers each entry carries.
    jackpot_carryover : int, default: 0
        Portion of ``prize_pool`` rolled over from earlier draws.

    Returns
    -------
    Draw
        The flushed draw.

    Raises
    ------
    ValueError
        If the label is taken or the shares exceed the pool.
    """
    if Draw.get_by_label(session, label) is not None:
        raise ValueError(f"A draw labelled '{label}' already exists")

    draw = Draw(
        label=label,
        prize_pool=prize_pool,
        tier_shares=tier_shares,
        charity_split=charity_split,
        number_count=number_count,
        jackpot_carryover=jackpot_carryover,
    )
    session.add(draw)
    session.flush()
    ActivityLog.record(
        session,
        "draw_created",
        f"Draw {label} opened with pool {format_minor_units(prize_pool)}",
        target_type="draw",
        target_id=draw.id,
        details={"tier_shares": draw.tier_shares, "charity_split_bps": draw.charity_split_bps},
    )
    session.flush()
    logger.info(f"Opened draw {label} (id={draw.id})")
    return draw


def submit_entry(
    session: Session,
    draw: Draw,
    subscriber: Subscriber,
    numbers: Sequence,
) -> Entry:
    """Record ``subscriber``'s numbers for ``draw``.

    Only subscribers whose summary plan is not ``"none"`` may enter, and only
    once per draw. The entry captures the subscriber's current charity.

    Raises
    ------
    ValueError
        If the draw is closed, the subscriber is ineligible or already
        entered, or a number is outside ``1..45``.
    """
    if draw.id is None or subscriber.id is None:
        raise ValueError("Draw and subscriber must be persisted before submitting an entry")
    if draw.status != "scheduled":
        raise ValueError(f"Draw '{draw.label}' is {draw.status} and no longer accepts entries")
    if not subscriber.is_eligible:
        raise ValueError(f"Subscriber {subscriber.id} has no active plan")

    scores = [validate_score(value) for value in numbers]
    if len(scores) != draw.number_count:
        raise ValueError(f"An entry needs exactly {draw.number_count} numbers, got {len(scores)}")

    existing = session.scalar(
        select(Entry.id).where(Entry.draw_id == draw.id, Entry.subscriber_id == subscriber.id)
    )
    if existing is not None:
        raise ValueError(f"Subscriber {subscriber.id} already entered draw '{draw.label}'")

    entry = Entry(
        draw_id=draw.id,
        subscriber_id=subscriber.id,
        numbers=scores,
        charity_id=subscriber.charity_id,
    )
    session.add(entry)
    session.flush()
    ActivityLog.record(
        session,
        "entry_submitted",
        f"Subscriber {subscriber.id} entered draw {draw.label}",
        target_type="entry",
        target_id=entry.id,
        details={"numbers": scores},
    )
    session.flush()
    return entry


def record_winning_numbers(
    session: Session,
    draw_id: int,
    numbers: Optional[Sequence[int]] = None,
) -> Draw:
    """Close a scheduled draw by fixing its winning numbers.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    draw_id : int
        Draw to close.
    numbers : Optional[Sequence[int]], default: None
        Winning numbers. When omitted they are derived from the popularity
        of submitted scores with :func:`~charitydraw.settlement.pool.analyze_draw_pool`.

    Returns
    -------
    Draw
        The draw, now ``drawn``.
    """
    draw = session.get(Draw, draw_id)
    if draw is None:
        raise NotFound("Draw", draw_id)
    if draw.status != "scheduled":
        raise InvalidStateTransition("Draw", draw_id, current=draw.status, action="draw")

    if numbers is None:
        entries = session.scalars(select(Entry).where(Entry.draw_id == draw_id)).all()
        scores = [score for entry in entries for score in entry.numbers]
        least = min(3, draw.number_count)
        analysis = analyze_draw_pool(scores, least=least, most=draw.number_count - least)
        numbers = analysis.winning_numbers
        logger.debug(
            f"Draw {draw_id}: least popular {analysis.least_popular}, "
            f"most popular {analysis.most_popular}"
        )

    winning = validate_numbers(
        sorted(validate_score(n) for n in numbers), count=draw.number_count, distinct=True
    )
    draw.winning_numbers = winning
    draw.status = "drawn"
    draw.drawn_at = datetime.now(timezone.utc)
    ActivityLog.record(
        session,
        "draw_drawn",
        f"Draw {draw.label} drawn: {draw.winning_numbers}",
        target_type="draw",
        target_id=draw.id,
        details={"winning_numbers": draw.winning_numbers},
    )
    session.flush()
    logger.info(f"Draw {draw_id} drawn with numbers {draw.winning_numbers}")
    return draw


def compute_draw_winners(session: Session, draw_id: int) -> list[WinnerRecord]:
    """Persist the winners of ``draw_id`` once; later calls replay them."""
    return DrawSettlementEngine(session).record_winners(draw_id)


def verify_winner(
    session: Session, winner_id: int, decision: str, admin_id: int
) -> WinnerRecord:
    """Accept or reject a pending winner. See :meth:`DrawSettlementEngine.verify`."""
    return DrawSettlementEngine(session).verify(winner_id, decision, admin_id)


def settle_winner(session: Session, winner_id: int, payment_reference: str) -> WinnerRecord:
    """Mark a verified winner as paid. See :meth:`DrawSettlementEngine.settle`."""
    return DrawSettlementEngine(session).settle(winner_id, payment_reference)


def publish_draw(session: Session, draw_id: int) -> Draw:
    """Publish a drawn draw whose winners have been computed.

    After publication the draw's numbers and prize configuration are frozen.

    Raises
    ------
    NotFound
        If the draw does not exist.
    InvalidStateTransition
        If the draw is not ``drawn`` or its winners were never computed.
    """
    draw = session.get(Draw, draw_id)
    if draw is None:
        raise NotFound("Draw", draw_id)
    if draw.status != "drawn":
        raise InvalidStateTransition("Draw", draw_id, current=draw.status, action="publish")
    if draw.winners_computed_at is None:
        raise InvalidStateTransition(
            "Draw",
            draw_id,
            current=draw.status,
            action="publish",
            detail="winners have not been computed",
        )

    draw.published_at = datetime.now(timezone.utc)
    draw.status = "published"
    ActivityLog.record(
        session,
        "draw_published",
        f"Draw {draw.label} published",
        target_type="draw",
        target_id=draw.id,
    )
    session.flush()
    logger.info(f"Draw {draw_id} published")
    return draw


def reconcile_subscriber(
    session: Session,
    subscriber_id: int,
    force: bool = False,
    client: Optional["BillingClient"] = None,
) -> ReconcileResult:
    """Bring one subscriber's cached subscription in line with billing.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    subscriber_id : int
        Subscriber to reconcile.
    force : bool, default: False
        Always consult billing instead of serving the cached row.
    client : Optional[BillingClient]
        Optional pre-configured :class:`~charitydraw.billing.client.BillingClient`.
        If not provided, a default one is created when first needed.

    Returns
    -------
    ReconcileResult
        See :meth:`BillingReconciler.reconcile`.
    """
    return BillingReconciler(session, client=client).reconcile(subscriber_id, force=force)


def sync_all_subscriptions(
    session: Session, client: Optional["BillingClient"] = None
) -> SyncReport:
    """Force-reconcile every subscriber that has a billing customer reference."""
    return BillingReconciler(session, client=client).sync_all(force=True)
