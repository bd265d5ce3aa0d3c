"""Pytest configuration and fixtures for Dinner Surprise tests."""

import hashlib
import hmac
import json
import os
import time
import uuid
from dataclasses import replace
from datetime import timedelta
from typing import Any, AsyncGenerator, Sequence

# Settings are read at import time
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-supabase-jwt-secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_PRICE_ID_PREMIUM_MONTHLY", "price_premium_monthly")
os.environ.setdefault("STRIPE_PRICE_ID_FAMILY_MONTHLY", "price_family_monthly")
os.environ.setdefault("DEEPSEEK_API_KEY", "")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SENTRY_DSN", "")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dinner_surprise.api.deps import get_billing_provider, get_recipe_generator
from dinner_surprise.core.clock import from_timestamp, month_start, utcnow
from dinner_surprise.core.config import settings
from dinner_surprise.core.database import Base, get_db
from dinner_surprise.core.errors import BillingProviderError, BillingSubscriptionNotFound
from dinner_surprise.core.security import create_access_token
from dinner_surprise.crud import subscription as subscription_crud
from dinner_surprise.main import app
from dinner_surprise.models.profile import Profile
from dinner_surprise.models.user_subscription import UserSubscription
from dinner_surprise.providers.base import (
    BillingProvider,
    BillingSubscription,
    CheckoutSessionInfo,
)
from dinner_surprise.schemas.recipe import RecipeContent
from dinner_surprise.services.recipe_generator import template_recipe

# Use SQLite in-memory database for tests (faster and no setup needed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PERIOD_START = 1767225600  # 2026-01-01T00:00:00Z
PERIOD_END = 4102444800  # 2100-01-01T00:00:00Z


class FakeBillingProvider(BillingProvider):
    """In-memory Stripe stand-in."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, BillingSubscription] = {}
        self.sessions: dict[str, CheckoutSessionInfo] = {}
        self.unavailable = False
        self.calls: list[tuple[str, Any]] = []

    def _check_available(self, operation: str) -> None:
        if self.unavailable:
            raise BillingProviderError(
                "Payment provider unavailable, please try again later",
                context={"operation": operation},
            )

    async def retrieve_subscription(self, subscription_id: str) -> BillingSubscription:
        self.calls.append(("retrieve_subscription", subscription_id))
        self._check_available("retrieve_subscription")
        if subscription_id not in self.subscriptions:
            raise BillingSubscriptionNotFound(f"No such subscription: '{subscription_id}'")
        return self.subscriptions[subscription_id]

    async def set_cancel_at_period_end(
        self, subscription_id: str, cancel: bool = True
    ) -> BillingSubscription:
        self.calls.append(("set_cancel_at_period_end", subscription_id))
        self._check_available("set_cancel_at_period_end")
        if subscription_id not in self.subscriptions:
            raise BillingSubscriptionNotFound(f"No such subscription: '{subscription_id}'")
        updated = replace(self.subscriptions[subscription_id], cancel_at_period_end=cancel)
        self.subscriptions[subscription_id] = updated
        return updated

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionInfo:
        self.calls.append(("retrieve_checkout_session", session_id))
        self._check_available("retrieve_checkout_session")
        if session_id not in self.sessions:
            raise ValueError(f"No such checkout session: '{session_id}'")
        return self.sessions[session_id]

    async def create_checkout_session(
        self,
        *,
        price_id: str,
        user_id: str,
        plan_type: str,
        success_url: str,
        cancel_url: str,
        customer_id: str | None = None,
        customer_email: str | None = None,
    ) -> CheckoutSessionInfo:
        self._check_available("create_checkout_session")
        session = CheckoutSessionInfo(
            id=f"cs_test_{len(self.sessions) + 1}",
            url="https://checkout.stripe.com/c/pay/cs_test",
            payment_status="unpaid",
            customer_id=customer_id,
            subscription_id=None,
            metadata={"userId": user_id, "planType": plan_type},
        )
        self.sessions[session.id] = session
        self.calls.append(("create_checkout_session", price_id))
        return session

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        self.calls.append(("create_portal_session", customer_id))
        self._check_available("create_portal_session")
        return f"https://billing.stripe.com/p/session/{customer_id}"


class FakeRecipeGenerator:
    """DeepSeek stand-in returning the template recipe, or raising ``error``."""

    def __init__(self) -> None:
        self.error: Exception | None = None
        self.calls = 0

    async def generate(self, ingredients: Sequence[Any], servings: int) -> RecipeContent:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return template_recipe(ingredients, servings)

    async def close(self) -> None:
        pass


def remote_subscription(**overrides: Any) -> BillingSubscription:
    """Stripe-side premium subscription with sensible defaults."""
    values: dict[str, Any] = {
        "id": "sub_abc",
        "customer_id": "cus_123",
        "status": "active",
        "current_period_start": from_timestamp(PERIOD_START),
        "current_period_end": from_timestamp(PERIOD_END),
        "cancel_at_period_end": False,
        "price_id": "price_premium_monthly",
        "price_name": "Premium",
        "plan_type_hint": None,
    }
    values.update(overrides)
    return BillingSubscription(**values)


def subscription_payload(**overrides: Any) -> dict[str, Any]:
    """Stripe subscription object as delivered in webhook events."""
    payload: dict[str, Any] = {
        "id": "sub_abc",
        "object": "subscription",
        "customer": "cus_123",
        "status": "active",
        "cancel_at_period_end": False,
        "current_period_start": PERIOD_START,
        "current_period_end": PERIOD_END,
        "metadata": {},
        "items": {
            "object": "list",
            "data": [
                {
                    "id": "si_1",
                    "price": {
                        "id": "price_premium_monthly",
                        "nickname": None,
                        "product": {"id": "prod_1", "name": "Premium"},
                    },
                }
            ],
        },
    }
    payload.update(overrides)
    return payload


def stripe_event(event_type: str, obj: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": f"evt_{uuid.uuid4().hex[:12]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def sign_payload(payload: str, secret: str | None = None, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header for ``payload``."""
    timestamp = timestamp or int(time.time())
    secret = secret or settings.STRIPE_WEBHOOK_SECRET
    signature = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def signed_event(event: dict[str, Any]) -> tuple[bytes, str]:
    body = json.dumps(event)
    return body.encode("utf-8"), sign_payload(body)


@pytest.fixture
async def engine():
    """Create async engine for tests with SQLite in-memory database."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,  # StaticPool for in-memory SQLite
        connect_args={"check_same_thread": False},  # Required for SQLite
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def billing() -> FakeBillingProvider:
    return FakeBillingProvider()


@pytest.fixture
def generator() -> FakeRecipeGenerator:
    return FakeRecipeGenerator()


@pytest.fixture
def make_profile(db_session: AsyncSession):
    """Factory creating a profile whose usage window is the current month."""

    async def _make_profile(tier: str = "free", **fields: Any) -> Profile:
        values: dict[str, Any] = {
            "id": uuid.uuid4(),
            "email": "cook@example.com",
            "tier": tier,
            "monthly_usage": 0,
            "saved_recipes_count": 0,
            "usage_period_start": month_start(utcnow()),
        }
        values.update(fields)
        profile = Profile(**values)
        db_session.add(profile)
        await db_session.commit()
        await db_session.refresh(profile)
        return profile

    return _make_profile


@pytest.fixture
def make_subscription(db_session: AsyncSession):
    """Factory storing a subscription record through the record store."""

    async def _make_subscription(user_id: uuid.UUID, **fields: Any) -> UserSubscription:
        subscription = await subscription_crud.upsert_subscription(db_session, user_id, fields)
        await db_session.commit()
        return subscription

    return _make_subscription


@pytest.fixture
async def test_profile(make_profile) -> Profile:
    return await make_profile()


@pytest.fixture
async def premium_user(make_profile, make_subscription, billing: FakeBillingProvider) -> Profile:
    """Premium user backed by Stripe subscription ``sub_abc`` of customer ``cus_123``."""
    profile = await make_profile(tier="premium")
    await make_subscription(
        profile.id,
        plan_type="premium",
        status="active",
        stripe_customer_id="cus_123",
        stripe_subscription_id="sub_abc",
        price_id="price_premium_monthly",
        current_period_start=from_timestamp(PERIOD_START),
        current_period_end=from_timestamp(PERIOD_END),
    )
    billing.subscriptions["sub_abc"] = remote_subscription()
    return profile


def auth_headers_for(user_id: uuid.UUID) -> dict[str, str]:
    token = create_access_token(user_id, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(test_profile: Profile) -> dict[str, str]:
    return auth_headers_for(test_profile.id)


@pytest.fixture
async def async_client(
    db_session: AsyncSession,
    billing: FakeBillingProvider,
    generator: FakeRecipeGenerator,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database, Stripe and AI overrides."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_billing_provider] = lambda: billing
    app.dependency_overrides[get_recipe_generator] = lambda: generator

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
