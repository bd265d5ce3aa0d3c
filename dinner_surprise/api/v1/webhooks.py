"""Stripe webhook endpoint."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from dinner_surprise.api.deps import get_billing_provider
from dinner_surprise.core.database import get_db
from dinner_surprise.core.errors import WebhookVerificationError
from dinner_surprise.core.rate_limit import webhook_limit
from dinner_surprise.providers.base import BillingProvider
from dinner_surprise.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/billing")
@webhook_limit
async def billing_webhook(
    request: Request,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
    billing: Annotated[BillingProvider, Depends(get_billing_provider)],
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> dict[str, bool]:
    """Handle Stripe webhook events.

    The raw body is verified against the signature header before anything is
    parsed. Events the service does not handle are acknowledged as well, so
    Stripe stops retrying them.

    Raises:
        HTTPException: 400 on a bad signature or payload, 500 if handling failed
    """
    payload = await request.body()
    service = WebhookService(db, billing)

    try:
        event = await service.handle_event(payload, stripe_signature)
    except WebhookVerificationError as e:
        logger.warning(f"Rejected webhook delivery: {e.message}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except Exception as e:
        logger.error(f"Error processing webhook: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook handler failed",
        )

    logger.info(f"Processed webhook event: {type(event).__name__}")
    return {"received": True}
