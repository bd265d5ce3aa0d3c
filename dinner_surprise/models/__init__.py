"""SQLAlchemy database models."""

from dinner_surprise.models.profile import Profile
from dinner_surprise.models.recipe import Recipe
from dinner_surprise.models.user_subscription import UserSubscription

__all__ = [
    "Profile",
    "Recipe",
    "UserSubscription",
]
