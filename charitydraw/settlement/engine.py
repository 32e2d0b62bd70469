"""Settlement engine: persists winners and drives them to a paid state."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..errors import InvalidStateTransition, NotFound
from ..models import ActivityLog, Admin, Donation, Draw, Entry, WinnerRecord
from ..money import format_minor_units
from .allocation import WinnerAllocation, compute_winners

logger = logging.getLogger(__name__)

_DECISIONS = {
    "accept": "verified",
    "verified": "verified",
    "reject": "rejected",
    "rejected": "rejected",
}


class DrawSettlementEngine:
    """Engine that turns draw results into winner ledger rows and settles them.

    Every state change is a conditional ``UPDATE`` guarded by the expected
    current state, so two concurrent requests for the same record produce one
    transition and one :class:`~charitydraw.errors.InvalidStateTransition`.
    """

    def __init__(self, session: Session) -> None:
        """Create a settlement engine bound to a SQLAlchemy session.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session used for lookups and persistence.
        """

        self._session = session

    @staticmethod
    def compute_winners(draw: Draw, entries: Sequence[Entry]) -> list[WinnerAllocation]:
        """Pure winner computation; see :func:`.allocation.compute_winners`."""
        return compute_winners(draw, entries)

    def record_winners(self, draw_id: int) -> list[WinnerRecord]:
        """Persist the winners of a drawn draw, exactly once.

        Parameters
        ----------
        draw_id : int
            Draw whose entries are evaluated.

        Returns
        -------
        list[WinnerRecord]
            Winner rows for the draw in ``pending`` state on first run. Later
            calls replay the stored rows unchanged, whatever their state.

        Notes
        -----
        The draw is claimed by setting ``winners_computed_at`` with
        ``WHERE winners_computed_at IS NULL``; only the caller whose update hits
        a row writes winners.

        Raises
        ------
        NotFound
            If the draw does not exist.
        InvalidStateTransition
            If the draw has no winning numbers yet.
        """
        draw = self._session.get(Draw, draw_id)
        if draw is None:
            raise NotFound("Draw", draw_id)
        if draw.winners_computed_at is not None:
            logger.debug(f"Draw {draw_id}: winners already computed, replaying")
            return WinnerRecord.for_draw(self._session, draw_id)
        if draw.status != "drawn":
            raise InvalidStateTransition(
                "Draw", draw_id, current=draw.status, action="compute winners"
            )

        now = datetime.now(timezone.utc)
        with self._session.begin_nested():
            claimed = self._session.execute(
                update(Draw)
                .where(Draw.id == draw_id, Draw.winners_computed_at.is_(None))
                .values(winners_computed_at=now)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 1:
                entries = self._session.scalars(
                    select(Entry).where(Entry.draw_id == draw_id).order_by(Entry.id.asc())
                ).all()
                allocations = compute_winners(draw, entries)
                for allocation in allocations:
                    self._session.add(_winner_from_allocation(draw_id, allocation))
                ActivityLog.record(
                    self._session,
                    "winners_computed",
                    f"{len(allocations)} winners computed for draw {draw.label}",
                    target_type="draw",
                    target_id=draw_id,
                    details={"entries": len(entries), "winners": len(allocations)},
                )
                self._session.flush()
                logger.info(
                    f"Draw {draw_id}: recorded {len(allocations)} winners from {len(entries)} entries"
                )
            else:
                logger.info(f"Draw {draw_id}: winners computed concurrently, replaying")
        self._session.refresh(draw)
        return WinnerRecord.for_draw(self._session, draw_id)

    def verify(self, winner_id: int, decision: str, admin_id: int) -> WinnerRecord:
        """Accept or reject a pending winner on behalf of ``admin_id``.

        Parameters
        ----------
        winner_id : int
            Winner record to review.
        decision : str
            ``"accept"``/``"verified"`` or ``"reject"``/``"rejected"``.
        admin_id : int
            Admin the transition is attributed to.

        Returns
        -------
        WinnerRecord
            The record in its new ``verified`` or ``rejected`` state.

        Raises
        ------
        ValueError
            If ``decision`` is not recognised.
        NotFound
            If the winner or the admin does not exist.
        InvalidStateTransition
            If the record is no longer ``pending``.
        """
        new_status = _DECISIONS.get(decision)
        if new_status is None:
            raise ValueError(f"Unknown verification decision '{decision}'")
        record = self._get_winner(winner_id)
        if self._session.get(Admin, admin_id) is None:
            raise NotFound("Admin", admin_id)
        if record.verification_status != "pending":
            raise InvalidStateTransition(
                "WinnerRecord", winner_id, current=record.verification_status, action="verify"
            )

        now = datetime.now(timezone.utc)
        with self._session.begin_nested():
            result = self._session.execute(
                update(WinnerRecord)
                .where(
                    WinnerRecord.id == winner_id,
                    WinnerRecord.verification_status == "pending",
                )
                .values(
                    verification_status=new_status,
                    verified_by_admin_id=admin_id,
                    verified_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            won = result.rowcount == 1
            if won:
                ActivityLog.record(
                    self._session,
                    "winner_verified" if new_status == "verified" else "winner_rejected",
                    f"Winner {winner_id} {new_status} (tier {record.tier}, "
                    f"{format_minor_units(record.gross_prize)})",
                    admin_id=admin_id,
                    target_type="winner_record",
                    target_id=winner_id,
                    details={"decision": new_status},
                )
                self._session.flush()
        self._session.refresh(record)
        if not won:
            raise InvalidStateTransition(
                "WinnerRecord", winner_id, current=record.verification_status, action="verify"
            )
        logger.info(f"Winner {winner_id} {new_status} by admin {admin_id}")
        return record

    def settle(self, winner_id: int, payment_reference: str) -> WinnerRecord:
        """Mark a verified winner as paid.

        Parameters
        ----------
        winner_id : int
            Winner record being paid.
        payment_reference : str
            External reference proving the funds moved.

        Returns
        -------
        WinnerRecord
            The settled record. Repeating the call with the same reference
            returns it unchanged.

        Notes
        -----
        Settlement also writes the charity's ``prize_split``
        :class:`~charitydraw.models.donation.Donation` row in the same savepoint.
        Errors are never swallowed here.

        Raises
        ------
        ValueError
            If ``payment_reference`` is empty.
        NotFound
            If the winner does not exist.
        InvalidStateTransition
            If the record is not ``verified``, or was settled with a different
            reference.
        """
        reference = (payment_reference or "").strip()
        if not reference:
            raise ValueError("A payment reference is required to settle a winner")
        record = self._get_winner(winner_id)

        if record.verification_status == "settled":
            return self._settled_replay(record, reference)
        if record.verification_status != "verified":
            raise InvalidStateTransition(
                "WinnerRecord", winner_id, current=record.verification_status, action="settle"
            )

        now = datetime.now(timezone.utc)
        with self._session.begin_nested():
            result = self._session.execute(
                update(WinnerRecord)
                .where(
                    WinnerRecord.id == winner_id,
                    WinnerRecord.verification_status == "verified",
                    WinnerRecord.is_paid.is_(False),
                )
                .values(
                    verification_status="settled",
                    is_paid=True,
                    payout_reference=reference,
                    settled_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            won = result.rowcount == 1
            if won:
                self._record_donation(record)
                ActivityLog.record(
                    self._session,
                    "winner_settled",
                    f"Winner {winner_id} paid {format_minor_units(record.net_payout)}",
                    target_type="winner_record",
                    target_id=winner_id,
                    details={
                        "payment_reference": reference,
                        "net_payout": record.net_payout,
                        "charity_amount": record.charity_amount,
                    },
                )
                self._session.flush()
        self._session.refresh(record)
        if not won:
            if record.verification_status == "settled":
                return self._settled_replay(record, reference)
            raise InvalidStateTransition(
                "WinnerRecord", winner_id, current=record.verification_status, action="settle"
            )
        logger.info(f"Winner {winner_id} settled with reference {reference}")
        return record

    def _settled_replay(self, record: WinnerRecord, reference: str) -> WinnerRecord:
        if record.payout_reference == reference:
            logger.info(f"Winner {record.id} already settled with {reference}; nothing to do")
            return record
        raise InvalidStateTransition(
            "WinnerRecord",
            record.id,
            current="settled",
            action="settle",
            detail="already settled with a different payment reference",
        )

    def _record_donation(self, record: WinnerRecord) -> None:
        if record.charity_amount <= 0:
            return
        if not record.charity_id:
            logger.warning(
                f"Winner {record.id} has a charity amount of {record.charity_amount} "
                "but no charity selected; no donation row written"
            )
            return
        self._session.add(
            Donation(
                charity_id=record.charity_id,
                amount=record.charity_amount,
                source="prize_split",
                subscriber_id=record.subscriber_id,
                draw_id=record.draw_id,
                winner_record_id=record.id,
            )
        )

    def _get_winner(self, winner_id: int) -> WinnerRecord:
        record = self._session.get(WinnerRecord, winner_id, populate_existing=True)
        if record is None:
            raise NotFound("WinnerRecord", winner_id)
        return record


def _winner_from_allocation(draw_id: int, allocation: WinnerAllocation) -> WinnerRecord:
    return WinnerRecord(
        draw_id=draw_id,
        subscriber_id=allocation.subscriber_id,
        entry_id=allocation.entry_id,
        tier=allocation.tier,
        match_count=allocation.match_count,
        gross_prize=allocation.gross_prize,
        charity_amount=allocation.charity_amount,
        net_payout=allocation.net_payout,
        charity_id=allocation.charity_id,
        verification_status="pending",
        is_paid=False,
    )


__all__ = ["DrawSettlementEngine"]
