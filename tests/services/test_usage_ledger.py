"""Tests for the usage ledger (quota check-and-increment and compensation)."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from dinner_surprise.core.clock import month_start, utcnow
from dinner_surprise.core.config import settings
from dinner_surprise.core.errors import CompensationError, ProfileNotFoundError
from dinner_surprise.crud import profile as profile_crud
from dinner_surprise.models.subscription_plan import PlanType
from dinner_surprise.services.usage_ledger import UsageLedger, usage_window_start


async def counters(db_session: AsyncSession, user_id: uuid.UUID) -> tuple[int, int]:
    profile = await profile_crud.get_profile(db_session, user_id, refresh=True)
    return profile.monthly_usage, profile.saved_recipes_count


class TestGenerationQuota:
    """Test monthly generation accounting."""

    @pytest.mark.asyncio
    async def test_free_user_stops_at_limit(self, db_session: AsyncSession, make_profile):
        """Test that the third generation is the last one for a free user."""
        profile = await make_profile(monthly_usage=2)
        ledger = UsageLedger(db_session)

        allowed = await ledger.try_consume_generation(profile.id)
        denied = await ledger.try_consume_generation(profile.id)

        assert allowed.allowed is True
        assert allowed.used == 3
        assert allowed.limit == 3
        assert denied.allowed is False
        assert denied.used == 3
        assert (await counters(db_session, profile.id))[0] == 3

    @pytest.mark.asyncio
    async def test_concurrent_consumers_get_one_slot(self, session_factory, make_profile):
        """Test that two simultaneous requests for the last slot admit exactly one."""
        profile = await make_profile(monthly_usage=2)

        async with session_factory() as first, session_factory() as second:
            decisions = await asyncio.gather(
                UsageLedger(first).try_consume_generation(profile.id),
                UsageLedger(second).try_consume_generation(profile.id),
            )

        assert sorted(decision.allowed for decision in decisions) == [False, True]
        async with session_factory() as check:
            assert (await counters(check, profile.id))[0] == 3

    @pytest.mark.asyncio
    async def test_paid_plan_unlimited(self, db_session: AsyncSession, make_profile, make_subscription):
        """Test that premium users are not limited."""
        profile = await make_profile(tier="premium", monthly_usage=500)
        await make_subscription(profile.id, plan_type="premium", status="active")

        decision = await UsageLedger(db_session).try_consume_generation(profile.id)

        assert decision.allowed is True
        assert decision.limit is None
        assert decision.plan_type is PlanType.PREMIUM

    @pytest.mark.asyncio
    async def test_expired_cancellation_counts_as_free(
        self, db_session: AsyncSession, make_profile, make_subscription
    ):
        """Test that a lapsed cancel-at-period-end plan is free before any reconcile."""
        profile = await make_profile(tier="premium", monthly_usage=3)
        await make_subscription(
            profile.id,
            plan_type="premium",
            status="active_until_period_end",
            cancel_at_period_end=True,
            current_period_end=utcnow() - timedelta(days=1),
        )

        decision = await UsageLedger(db_session).try_consume_generation(profile.id)

        assert decision.allowed is False
        assert decision.plan_type is PlanType.FREE

    @pytest.mark.asyncio
    async def test_new_period_resets_usage(self, db_session: AsyncSession, make_profile):
        """Test that last month's usage does not count against this month."""
        last_month = month_start(utcnow()) - timedelta(days=3)
        profile = await make_profile(monthly_usage=3, usage_period_start=month_start(last_month))

        decision = await UsageLedger(db_session).try_consume_generation(profile.id)

        assert decision.allowed is True
        assert decision.used == 1

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session: AsyncSession):
        with pytest.raises(ProfileNotFoundError):
            await UsageLedger(db_session).try_consume_generation(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_release_restores_count(self, db_session: AsyncSession, make_profile):
        """Test that a failed AI call gives its generation back."""
        profile = await make_profile(monthly_usage=2)
        ledger = UsageLedger(db_session)

        await ledger.try_consume_generation(profile.id)
        await ledger.release_generation(profile.id)

        assert (await counters(db_session, profile.id))[0] == 2

    @pytest.mark.asyncio
    async def test_release_never_negative(self, db_session: AsyncSession, test_profile):
        await UsageLedger(db_session).release_generation(test_profile.id)

        assert (await counters(db_session, test_profile.id))[0] == 0

    @pytest.mark.asyncio
    async def test_release_failure_raises_compensation_error(
        self, db_session: AsyncSession, test_profile, monkeypatch
    ):
        """Test that a failed compensating write is reported, not swallowed."""

        async def failing_execute(*args, **kwargs):
            raise OperationalError("UPDATE profiles", {}, Exception("database is locked"))

        monkeypatch.setattr(db_session, "execute", failing_execute)

        with pytest.raises(CompensationError):
            await UsageLedger(db_session).release_generation(test_profile.id)


class TestSaveQuota:
    """Test saved-recipe accounting."""

    @pytest.mark.asyncio
    async def test_free_user_save_limit(self, db_session: AsyncSession, make_profile):
        profile = await make_profile(saved_recipes_count=4)
        ledger = UsageLedger(db_session)

        assert (await ledger.try_save_item(profile.id)).allowed is True
        assert (await ledger.try_save_item(profile.id)).allowed is False
        assert (await counters(db_session, profile.id))[1] == 5

    @pytest.mark.asyncio
    async def test_saved_recipes_do_not_reset(self, db_session: AsyncSession, make_profile):
        """Test that a new month does not free saved-recipe slots."""
        profile = await make_profile(
            saved_recipes_count=5,
            usage_period_start=datetime(2020, 1, 1, tzinfo=timezone.utc),
        )

        assert (await UsageLedger(db_session).try_save_item(profile.id)).allowed is False

    @pytest.mark.asyncio
    async def test_paid_user_save_limit(
        self, db_session: AsyncSession, make_profile, make_subscription
    ):
        """Test that premium users may keep 100 saved recipes."""
        profile = await make_profile(tier="premium", saved_recipes_count=99)
        await make_subscription(profile.id, plan_type="premium", status="active")
        ledger = UsageLedger(db_session)

        allowed = await ledger.try_save_item(profile.id)
        denied = await ledger.try_save_item(profile.id)

        assert allowed.allowed is True
        assert allowed.limit == 100
        assert denied.allowed is False
        assert denied.plan_type is PlanType.PREMIUM
        assert (await counters(db_session, profile.id))[1] == 100

    @pytest.mark.asyncio
    async def test_release_saved_item(self, db_session: AsyncSession, make_profile):
        profile = await make_profile(saved_recipes_count=5)

        await UsageLedger(db_session).release_saved_item(profile.id)

        assert (await counters(db_session, profile.id))[1] == 4


class TestUsageSummary:
    """Test the read-only usage view."""

    @pytest.mark.asyncio
    async def test_summary(self, db_session: AsyncSession, make_profile):
        profile = await make_profile(monthly_usage=1, saved_recipes_count=2)

        summary = await UsageLedger(db_session).get_usage(profile.id)

        assert summary.plan_type is PlanType.FREE
        assert summary.monthly_usage == 1
        assert summary.monthly_limit == 3
        assert summary.saved_recipes_count == 2
        assert summary.saved_recipes_limit == 5

    @pytest.mark.asyncio
    async def test_stale_window_reported_as_zero_without_writing(
        self, db_session: AsyncSession, make_profile
    ):
        profile = await make_profile(
            monthly_usage=3,
            usage_period_start=datetime(2020, 1, 1, tzinfo=timezone.utc),
        )

        summary = await UsageLedger(db_session).get_usage(profile.id)

        assert summary.monthly_usage == 0
        assert (await counters(db_session, profile.id))[0] == 3


class TestUsageWindow:
    """Test the usage reset policy."""

    def test_calendar_month_default(self):
        now = datetime(2026, 5, 17, 9, 30, tzinfo=timezone.utc)

        assert usage_window_start(PlanType.PREMIUM, None, now) == datetime(2026, 5, 1, tzinfo=timezone.utc)

    def test_billing_period_policy(self, monkeypatch):
        """Test that paid users can reset on their billing anniversary."""
        monkeypatch.setattr(settings, "USAGE_RESET_POLICY", "billing_period")
        now = datetime(2026, 5, 17, 9, 30, tzinfo=timezone.utc)
        subscription = SimpleNamespace(current_period_start=datetime(2026, 5, 9, 12, 0))

        assert usage_window_start(PlanType.PREMIUM, subscription, now) == datetime(
            2026, 5, 9, 12, 0, tzinfo=timezone.utc
        )
        assert usage_window_start(PlanType.FREE, subscription, now) == datetime(
            2026, 5, 1, tzinfo=timezone.utc
        )
