"""Boundary mapping from billing-provider payloads to :class:`BillingSnapshot`."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class BillingSnapshot:
    """Point-in-time subscription state reported by the billing system.

    Attributes
    ----------
    customer_ref : str
        Billing customer the subscription belongs to.
    external_subscription_id : str
        Provider id of the subscription.
    status : str
        Provider status string, kept verbatim (``active``, ``past_due``,
        ``canceled``, ``trialing``, ``unpaid``, ...).
    plan : str
        ``"annual"`` for yearly billing intervals, otherwise ``"monthly"``.
    current_period_start, current_period_end : Optional[datetime]
        Boundaries of the current billing period (UTC).
    cancel_at_period_end : bool
        Whether the subscription ends when the current period does.
    """

    customer_ref: str
    external_subscription_id: str
    status: str
    plan: str
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool

    @property
    def is_active(self) -> bool:
        return self.status in ("active", "trialing")

    @property
    def summary_plan(self) -> str:
        """Plan to expose on the subscriber: the billed plan while active, else ``"none"``."""
        return self.plan if self.is_active else "none"

    @classmethod
    def from_provider(cls, customer_ref: str, payload: Mapping[str, Any]) -> "BillingSnapshot":
        """Map a raw provider subscription object into a snapshot.

        Raises
        ------
        ValueError
            If the payload lacks an id or a status.
        """
        subscription_id = payload.get("id")
        status = payload.get("status")
        if not subscription_id:
            raise ValueError("billing subscription payload has no id")
        if not status:
            raise ValueError(f"billing subscription {subscription_id} has no status")
        return cls(
            customer_ref=str(payload.get("customer") or customer_ref),
            external_subscription_id=str(subscription_id),
            status=str(status),
            plan=_plan_from_interval(_billing_interval(payload)),
            current_period_start=_from_epoch(_period_value(payload, "current_period_start")),
            current_period_end=_from_epoch(_period_value(payload, "current_period_end")),
            cancel_at_period_end=bool(payload.get("cancel_at_period_end") or False),
        )


def _billing_interval(payload: Mapping[str, Any]) -> Optional[str]:
    items = (payload.get("items") or {}).get("data") or []
    if items:
        price = items[0].get("price") or items[0].get("plan") or {}
        recurring = price.get("recurring") or {}
        interval = recurring.get("interval") or price.get("interval")
        if interval:
            return str(interval)
    plan = payload.get("plan") or {}
    interval = plan.get("interval")
    return str(interval) if interval else None


def _plan_from_interval(interval: Optional[str]) -> str:
    return "annual" if interval == "year" else "monthly"


def _period_value(payload: Mapping[str, Any], key: str) -> Any:
    # Newer API versions moved the period onto the subscription items.
    if payload.get(key) is not None:
        return payload.get(key)
    items = (payload.get("items") or {}).get("data") or []
    if items:
        return items[0].get(key)
    return None


def _from_epoch(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError) as exc:
        raise ValueError(f"invalid billing timestamp {value!r}") from exc


__all__ = ["BillingSnapshot"]
