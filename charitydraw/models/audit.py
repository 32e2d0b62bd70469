from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, Session, mapped_column

from .base import ID_TYPE, Base

ACTION_TYPES = (
    "subscription_synced",
    "subscription_cleared",
    "draw_created",
    "draw_drawn",
    "draw_published",
    "winners_computed",
    "winner_verified",
    "winner_rejected",
    "winner_settled",
    "entry_submitted",
)


class ActivityLog(Base):
    __tablename__ = "activity_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    actor_admin_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("admins.id", ondelete="SET NULL"), nullable=True
    )
    target_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    target_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(
            "action_type IN ({})".format(",".join(f"'{a}'" for a in ACTION_TYPES)),
            name="action_type_enum",
        ),
    )

    @classmethod
    def record(
        cls,
        session: Session,
        action_type: str,
        description: str,
        *,
        admin_id: Optional[int] = None,
        target_type: Optional[str] = None,
        target_id: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> "ActivityLog":
        """Add an activity row to ``session`` (flushed with the caller's work)."""
        if action_type not in ACTION_TYPES:
            raise ValueError(f"Unknown activity type '{action_type}'")
        entry = cls(
            action_type=action_type,
            description=description,
            actor_admin_id=admin_id,
            target_type=target_type,
            target_id=target_id,
            details=details,
        )
        session.add(entry)
        return entry
