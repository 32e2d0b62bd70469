"""Reconcile cached subscription state with the external billing system."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Iterator, Optional, TypeVar, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import reconcile_max_attempts
from ..db.utils import dt_iso
from ..errors import NotFound, PersistenceConflict, SyncUnavailable
from ..models import ActivityLog, Subscriber, Subscription
from .snapshot import BillingSnapshot

if TYPE_CHECKING:
    from .client import BillingClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCK_TIMEOUT_SECONDS = 30.0

_LOCKS_GUARD = threading.Lock()
# subscriber id -> (lock, number of threads holding or waiting on it)
_SUBSCRIBER_LOCKS: dict[int, tuple[threading.Lock, int]] = {}


@contextmanager
def _subscriber_lock(subscriber_id: int, timeout: Optional[float] = None) -> Iterator[None]:
    """Allow one in-flight billing fetch per subscriber within this process.

    Entries are dropped once no thread holds or waits on them, so the registry
    only tracks subscribers currently being reconciled.
    """
    if timeout is None:
        timeout = LOCK_TIMEOUT_SECONDS
    with _LOCKS_GUARD:
        lock, users = _SUBSCRIBER_LOCKS.get(subscriber_id, (None, 0))
        if lock is None:
            lock = threading.Lock()
        _SUBSCRIBER_LOCKS[subscriber_id] = (lock, users + 1)
    try:
        if not lock.acquire(timeout=timeout):
            raise SyncUnavailable(
                f"Reconciliation for subscriber {subscriber_id} is already in progress"
            )
        try:
            yield
        finally:
            lock.release()
    finally:
        with _LOCKS_GUARD:
            lock, users = _SUBSCRIBER_LOCKS[subscriber_id]
            if users <= 1:
                del _SUBSCRIBER_LOCKS[subscriber_id]
            else:
                _SUBSCRIBER_LOCKS[subscriber_id] = (lock, users - 1)


@dataclass
class ReconcileResult:
    """Outcome of :meth:`BillingReconciler.reconcile`.

    Attributes
    ----------
    subscription : Subscription | BillingSnapshot | None
        The persisted record, or the bare snapshot when it could not be saved.
        ``None`` when the subscriber has no billing subscription.
    source : Optional[str]
        ``"database"`` for a cache hit, ``"billing"`` when fetched, ``None``
        when nothing was found.
    synced : bool
        ``False`` when the local store could not be brought up to date.
    error : Optional[str]
        Persistence error message for best-effort results.
    message : Optional[str]
        Human-readable note for empty results.
    """

    subscription: Optional[Union[Subscription, BillingSnapshot]]
    source: Optional[str]
    synced: bool = True
    error: Optional[str] = None
    message: Optional[str] = None

    @property
    def status(self) -> str:
        return self.subscription.status if self.subscription is not None else "none"

    @property
    def is_active(self) -> bool:
        return self.status in ("active", "trialing")


@dataclass
class SyncReport:
    """Tally produced by :meth:`BillingReconciler.sync_all`."""

    synced: int = 0
    skipped: int = 0
    errors: int = 0
    details: list[dict] = field(default_factory=list)


class BillingReconciler:
    """Keeps :class:`Subscription` rows aligned with the billing system of record."""

    def __init__(
        self,
        session: Session,
        *,
        client: Optional["BillingClient"] = None,
        client_factory: Optional[Callable[[], "BillingClient"]] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        """Create a reconciler bound to a SQLAlchemy session.

        Parameters
        ----------
        session : Session
            Active session used for reads and the upsert.
        client : Optional[BillingClient], default: None
            Pre-configured billing client. When omitted, one is built from the
            environment the first time an external call is needed, so cache
            hits work without billing credentials.
        client_factory : Optional[Callable[[], BillingClient]], default: None
            Alternative constructor used instead of :class:`BillingClient`.
        max_attempts : Optional[int], default: None
            Bound on upsert retries after a write conflict. Defaults to
            ``RECONCILE_MAX_ATTEMPTS`` (3).
        """
        self._session = session
        self._client = client
        self._client_factory = client_factory
        self._max_attempts = max_attempts or reconcile_max_attempts()

    def _get_client(self) -> "BillingClient":
        if self._client is None:
            if self._client_factory is not None:
                self._client = self._client_factory()
            else:
                from .client import BillingClient

                self._client = BillingClient()
        return self._client

    def cached_subscription(self, subscriber_id: int) -> Optional[Subscription]:
        """Return the locally cached subscription without contacting billing.

        Intended as the fallback when :meth:`reconcile` raises
        :class:`SyncUnavailable`.
        """
        return Subscription.for_subscriber(self._session, subscriber_id)

    def reconcile(self, subscriber_id: int, force: bool = False) -> ReconcileResult:
        """Return the authoritative subscription for ``subscriber_id``.

        Parameters
        ----------
        subscriber_id : int
            Primary key of an existing :class:`Subscriber`.
        force : bool, default: False
            Skip the cache and always consult the billing system. A forced
            call that finds no billing subscription deletes the cached row.

        Returns
        -------
        ReconcileResult
            The cached or freshly synced subscription, or an empty result.

        Notes
        -----
        Without ``force``, an existing cached row is returned untouched and no
        external call is made; freshness is only guaranteed right after a
        forced call or on first creation.

        Raises
        ------
        NotFound
            If the subscriber does not exist.
        ConfigurationError
            If billing credentials are missing or rejected.
        SyncUnavailable
            If the billing system is unreachable or times out.
        """
        subscriber = self._session.get(Subscriber, subscriber_id)
        if subscriber is None:
            raise NotFound("Subscriber", subscriber_id)

        with _subscriber_lock(subscriber_id):
            if not force:
                cached = self.cached_subscription(subscriber_id)
                if cached is not None:
                    logger.debug(f"Subscriber {subscriber_id}: serving cached subscription")
                    return ReconcileResult(cached, source="database", synced=True)

            customer_ref = subscriber.billing_customer_ref
            if not customer_ref:
                return self._no_subscription(
                    subscriber, force, message="Subscriber has no billing customer"
                )

            snapshot = self._get_client().latest_subscription(customer_ref)
            if snapshot is None:
                return self._no_subscription(
                    subscriber, force, message="No billing subscription found"
                )

            logger.info(
                f"Subscriber {subscriber_id}: billing reports {snapshot.status} "
                f"{snapshot.plan} subscription {snapshot.external_subscription_id}"
            )
            try:
                record = self._with_retries(self._apply_snapshot, subscriber, snapshot)
            except (PersistenceConflict, SQLAlchemyError) as exc:
                # Billing is the source of truth; hand back what it said even
                # though the local cache could not be updated.
                logger.warning(
                    f"Subscriber {subscriber_id}: could not persist billing snapshot: {exc}"
                )
                return ReconcileResult(
                    snapshot, source="billing", synced=False, error=str(exc)
                )
            return ReconcileResult(record, source="billing", synced=True)

    def sync_all(self, force: bool = True) -> SyncReport:
        """Reconcile every subscriber that has a billing customer reference.

        A failure for one subscriber is recorded in the report and does not stop
        the batch; :class:`~charitydraw.errors.ConfigurationError` aborts it.
        """
        report = SyncReport()
        subscriber_ids = self._session.scalars(
            select(Subscriber.id)
            .where(Subscriber.billing_customer_ref.is_not(None))
            .order_by(Subscriber.id.asc())
        ).all()
        logger.info(f"Syncing {len(subscriber_ids)} subscribers with billing customers")
        for subscriber_id in subscriber_ids:
            try:
                result = self.reconcile(subscriber_id, force=force)
            except SyncUnavailable as exc:
                report.errors += 1
                report.details.append({"subscriber_id": subscriber_id, "error": str(exc)})
                continue

            if not result.synced:
                report.errors += 1
                report.details.append({"subscriber_id": subscriber_id, "error": result.error})
            elif result.subscription is None:
                report.skipped += 1
                report.details.append(
                    {"subscriber_id": subscriber_id, "status": "no_subscription"}
                )
            else:
                report.synced += 1
                report.details.append(
                    {
                        "subscriber_id": subscriber_id,
                        "status": result.subscription.status,
                        "plan": result.subscription.plan,
                        "synced_at": dt_iso(result.subscription.synced_at),
                    }
                )
        logger.info(
            f"Billing sync complete: synced={report.synced} skipped={report.skipped} "
            f"errors={report.errors}"
        )
        return report

    def _no_subscription(
        self, subscriber: Subscriber, force: bool, *, message: str
    ) -> ReconcileResult:
        if not force:
            return ReconcileResult(None, source=None, synced=True, message=message)
        try:
            self._with_retries(self._clear_cache, subscriber)
        except (PersistenceConflict, SQLAlchemyError) as exc:
            logger.warning(
                f"Subscriber {subscriber.id}: could not clear stale subscription: {exc}"
            )
            return ReconcileResult(
                None, source=None, synced=False, error=str(exc), message=message
            )
        return ReconcileResult(None, source=None, synced=True, message=message)

    def _with_retries(self, operation: Callable[..., T], *args) -> T:
        """Run ``operation`` inside a SAVEPOINT, retrying on write conflicts.

        A rolled-back attempt leaves nothing behind; the next attempt re-reads
        the current row before reapplying the snapshot.
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                with self._session.begin_nested():
                    result = operation(*args)
                    self._session.flush()
                return result
            except (IntegrityError, StaleDataError) as exc:
                last_error = exc
                logger.warning(
                    f"Write conflict on attempt {attempt}/{self._max_attempts}: {exc}"
                )
        raise PersistenceConflict(
            f"Gave up after {self._max_attempts} conflicting writes: {last_error}",
            attempts=self._max_attempts,
        ) from last_error

    def _apply_snapshot(
        self, subscriber: Subscriber, snapshot: BillingSnapshot
    ) -> Subscription:
        now = datetime.now(timezone.utc)
        record = Subscription.for_subscriber(self._session, subscriber.id)
        if record is None:
            record = Subscription(subscriber=subscriber)
            self._session.add(record)
        record.apply_snapshot(snapshot, now)
        subscriber.plan = snapshot.summary_plan
        subscriber.last_reconciled_at = now
        ActivityLog.record(
            self._session,
            "subscription_synced",
            f"Subscription synced from billing ({snapshot.status}, {snapshot.plan})",
            target_type="subscriber",
            target_id=subscriber.id,
            details={
                "external_subscription_id": snapshot.external_subscription_id,
                "status": snapshot.status,
                "plan": subscriber.plan,
            },
        )
        return record

    def _clear_cache(self, subscriber: Subscriber) -> None:
        now = datetime.now(timezone.utc)
        record = Subscription.for_subscriber(self._session, subscriber.id)
        if record is not None:
            self._session.delete(record)
            ActivityLog.record(
                self._session,
                "subscription_cleared",
                "Cached subscription removed: billing reports none",
                target_type="subscriber",
                target_id=subscriber.id,
                details={"external_subscription_id": record.external_subscription_id},
            )
        subscriber.plan = "none"
        subscriber.last_reconciled_at = now
        self._session.flush()
        self._session.expire(subscriber, ["subscription"])


__all__ = ["BillingReconciler", "ReconcileResult", "SyncReport"]
