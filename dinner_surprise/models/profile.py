"""Profile database model."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from dinner_surprise.core.database import Base
from dinner_surprise.models.subscription_plan import PlanType


class Profile(Base):
    """User profile, keyed by the Supabase auth user id.

    ``tier`` is a read-optimized mirror of ``UserSubscription.plan_type`` and
    is only written by the reconciliation write path. ``monthly_usage`` and
    ``saved_recipes_count`` form the usage ledger.
    """

    __tablename__ = "profiles"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
    )
    email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    full_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    tier: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PlanType.FREE.value,
    )

    # Usage ledger
    monthly_usage: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    saved_recipes_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    usage_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )  # start of the window monthly_usage counts

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<Profile {self.id} tier={self.tier}>"
