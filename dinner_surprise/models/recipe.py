"""Recipe database model."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from dinner_surprise.core.database import Base


class Recipe(Base):
    """Recipe saved by a user."""

    __tablename__ = "recipes"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    ingredients: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )  # [{"name": ..., "amount": ..., "unit": ...}]
    steps: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    servings: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )
    cooking_time: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="",
    )
    difficulty: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="medium",
    )
    calories: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    protein: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<Recipe {self.title!r} user_id={self.user_id}>"
