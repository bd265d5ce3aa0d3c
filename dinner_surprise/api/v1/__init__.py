"""API v1 router configuration."""

from fastapi import APIRouter

from dinner_surprise.api.v1 import recipes, subscriptions, users, webhooks

api_router = APIRouter()

api_router.include_router(webhooks.router)
api_router.include_router(users.router)
api_router.include_router(recipes.router)
api_router.include_router(subscriptions.router)
