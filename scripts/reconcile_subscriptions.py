#!/usr/bin/env python3
"""
Maintenance script: reconcile every stored subscription with Stripe.

Runs the same reconciliation as the sync endpoint for each user that has a
subscription record, so profile tiers that drifted from their subscription
(or subscriptions that drifted from Stripe) are repaired in one pass.

Usage:
    python scripts/reconcile_subscriptions.py [--dry-run] [--create-missing]

Options:
    --dry-run         List tier mismatches without contacting Stripe or writing
    --create-missing  Also seed subscription records for profiles without one
"""

import asyncio
import sys

from dinner_surprise.core.database import AsyncSessionLocal, dispose_engine
from dinner_surprise.core.errors import BillingProviderError
from dinner_surprise.crud import profile as profile_crud
from dinner_surprise.crud import subscription as subscription_crud
from dinner_surprise.providers.stripe_billing import StripeBillingProvider, configure_stripe
from dinner_surprise.services.reconciliation_service import ReconciliationService


async def reconcile_subscriptions(dry_run: bool = False, create_missing: bool = False) -> int:
    """Reconcile all users; returns a process exit code."""
    configure_stripe()
    billing = StripeBillingProvider()

    async with AsyncSessionLocal() as session:
        try:
            print("=" * 60)
            print("Subscription Reconciliation Script")
            print("=" * 60)

            service = ReconciliationService(session, billing)

            mismatches = await service.find_tier_mismatches()
            print(f"Profiles whose tier disagrees with their subscription: {len(mismatches)}")
            for mismatch in mismatches:
                print(f"  - {mismatch.user_id}: tier={mismatch.tier} plan={mismatch.plan_type}")
            print()

            subscriptions = await subscription_crud.list_subscriptions(session)
            user_ids = [subscription.user_id for subscription in subscriptions]

            if create_missing:
                known = set(user_ids)
                missing = [
                    profile.id
                    for profile in await profile_crud.list_profiles(session)
                    if profile.id not in known
                ]
                print(f"Profiles without a subscription record: {len(missing)}")
                user_ids.extend(missing)

            if dry_run:
                print("DRY RUN MODE - No changes were made")
                print(f"   Would reconcile {len(user_ids)} users")
                return 0

            failed = 0
            for user_id in user_ids:
                try:
                    state = await service.reconcile(user_id)
                except BillingProviderError as e:
                    # Nothing was written for this user; report and move on
                    await session.rollback()
                    failed += 1
                    print(f"  ! {user_id}: Stripe unavailable ({e.message})")
                    continue
                print(f"  - {user_id}: {state.plan_type.value}/{state.status.value}")

            print("=" * 60)
            print(f"Reconciled {len(user_ids) - failed} users, {failed} failed")
            print("=" * 60)
            return 1 if failed else 0

        except Exception as e:
            print()
            print("=" * 60)
            print(f"ERROR during reconciliation: {e}")
            print("=" * 60)
            await session.rollback()
            return 1

        finally:
            await dispose_engine()


if __name__ == "__main__":
    dry_run = "--dry-run" in sys.argv
    create_missing = "--create-missing" in sys.argv

    if dry_run:
        print()
        print("Running in DRY RUN mode - no changes will be made")
        print()

    exit_code = asyncio.run(
        reconcile_subscriptions(dry_run=dry_run, create_missing=create_missing)
    )
    sys.exit(exit_code)
