"""Subscribers and their locally cached billing subscription."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    String,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship, validates

from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from ..billing.snapshot import BillingSnapshot
    from .draw import Entry

SUMMARY_PLANS = ("monthly", "annual", "none")
BILLED_PLANS = ("monthly", "annual")
ACTIVE_STATUSES = frozenset({"active", "trialing"})


class Subscriber(Base):
    """A member of the lottery.

    The summary :attr:`plan` is the field read by draw eligibility checks; it is
    only written by billing reconciliation.
    """

    __tablename__ = "subscribers"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    billing_customer_ref: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )
    """Customer id in the external billing system; ``None`` if never billed."""

    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="none")
    """Summary plan: the billed plan while the subscription is active, else ``"none"``."""

    charity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    """Charity receiving this subscriber's prize split."""

    last_reconciled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    subscription: Mapped[Optional["Subscription"]] = relationship(
        back_populates="subscriber",
        uselist=False,
        cascade="all, delete-orphan",
    )
    entries: Mapped[list["Entry"]] = relationship(back_populates="subscriber")

    __table_args__ = (
        CheckConstraint("plan IN ('monthly','annual','none')", name="plan_enum"),
    )

    def __init__(
        self,
        email: str,
        *,
        full_name: Optional[str] = None,
        billing_customer_ref: Optional[str] = None,
        plan: str = "none",
        charity_id: Optional[str] = None,
    ) -> None:
        self.email = email
        self.full_name = full_name
        self.billing_customer_ref = billing_customer_ref
        self.plan = plan
        self.charity_id = charity_id

    @validates("email")
    def _normalize_email(self, _key: str, value: str) -> str:
        normalized = (value or "").strip().lower()
        if not normalized:
            raise ValueError("Subscriber email must not be empty")
        return normalized

    @validates("plan")
    def _check_plan(self, _key: str, value: str) -> str:
        if value not in SUMMARY_PLANS:
            raise ValueError(f"Unknown plan '{value}'")
        return value

    def __repr__(self) -> str:
        return (
            f"<Subscriber(id={self.id}, email='{self.email}', plan='{self.plan}', "
            f"billing_customer_ref='{self.billing_customer_ref}')>"
        )

    @property
    def subscription_status(self) -> str:
        """Cached billing status, or ``"none"`` when nothing is cached."""
        if self.subscription is None:
            return "none"
        return self.subscription.status

    @property
    def is_eligible(self) -> bool:
        """Whether the subscriber may enter draws."""
        return self.plan != "none"

    @classmethod
    def get_by_email(cls, session: Session, email: str) -> Optional["Subscriber"]:
        return session.scalar(select(cls).where(cls.email == email.strip().lower()))

    @classmethod
    def get_by_billing_ref(cls, session: Session, ref: str) -> Optional["Subscriber"]:
        return session.scalar(select(cls).where(cls.billing_customer_ref == ref))


class Subscription(Base):
    """Local copy of the latest billing snapshot for a subscriber.

    Every reconciliation replaces all billing fields at once; there is no
    field-level merge.
    """

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    subscriber_id: Mapped[int] = mapped_column(
        ID_TYPE,
        ForeignKey("subscribers.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    customer_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    external_subscription_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    """Provider status string, stored verbatim."""

    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")
    current_period_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    current_period_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    subscriber: Mapped["Subscriber"] = relationship(back_populates="subscription")

    __table_args__ = (
        CheckConstraint("plan IN ('monthly','annual')", name="billed_plan_enum"),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(subscriber_id={self.subscriber_id}, status='{self.status}', "
            f"plan='{self.plan}', external_subscription_id='{self.external_subscription_id}')>"
        )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def apply_snapshot(self, snapshot: "BillingSnapshot", synced_at: datetime) -> None:
        """Overwrite every billing field with ``snapshot`` (last write wins)."""
        self.customer_ref = snapshot.customer_ref
        self.external_subscription_id = snapshot.external_subscription_id
        self.status = snapshot.status
        self.plan = snapshot.plan
        self.current_period_start = snapshot.current_period_start
        self.current_period_end = snapshot.current_period_end
        self.cancel_at_period_end = snapshot.cancel_at_period_end
        self.synced_at = synced_at

    @classmethod
    def for_subscriber(cls, session: Session, subscriber_id: int) -> Optional["Subscription"]:
        return session.scalar(select(cls).where(cls.subscriber_id == subscriber_id))


__all__ = [
    "ACTIVE_STATUSES",
    "BILLED_PLANS",
    "SUMMARY_PLANS",
    "Subscriber",
    "Subscription",
]
