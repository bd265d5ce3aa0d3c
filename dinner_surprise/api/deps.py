"""Shared API dependencies: authentication and per-process clients."""

import uuid
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dinner_surprise.core.security import get_user_id_from_token
from dinner_surprise.providers.base import BillingProvider
from dinner_surprise.providers.stripe_billing import StripeBillingProvider
from dinner_surprise.services.recipe_generator import DeepSeekRecipeGenerator

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user_id(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> uuid.UUID:
    """
    Resolve the caller from the Supabase access token.

    The id is also stored on ``request.state`` so rate limits are keyed per user.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = get_user_id_from_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.user_id = str(user_id)
    return user_id


def ensure_same_user(body_user_id: uuid.UUID | None, current_user_id: uuid.UUID) -> None:
    """
    Reject requests whose body names a different user than the token.

    Raises:
        HTTPException: 403 on mismatch
    """
    if body_user_id is not None and body_user_id != current_user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only act on your own account",
        )


@lru_cache
def get_billing_provider() -> BillingProvider:
    return StripeBillingProvider()


@lru_cache
def get_recipe_generator() -> DeepSeekRecipeGenerator:
    return DeepSeekRecipeGenerator()


CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
