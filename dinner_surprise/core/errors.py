"""Typed application errors.

Services raise these; routers and the global handler in ``main.py`` translate
them to HTTP responses using ``status_code``.
"""

from __future__ import annotations


class DinnerSurpriseError(Exception):
    """Base class for all application errors."""

    status_code: int = 500
    error_code: str | None = None

    def __init__(self, message: str, *, context: dict | None = None) -> None:
        self.message = message
        self.context = context or {}
        super().__init__(message)


class WebhookVerificationError(DinnerSurpriseError):
    """Webhook signature or payload could not be verified."""

    status_code = 400


class AuthorizationError(DinnerSurpriseError):
    """Caller is authenticated but not allowed to act on the target user."""

    status_code = 403


class ProfileNotFoundError(DinnerSurpriseError):
    status_code = 404


class RecipeNotFoundError(DinnerSurpriseError):
    status_code = 404


class QuotaExceededError(DinnerSurpriseError):
    """Plan quota reached. A business condition, not a system failure."""

    status_code = 403
    error_code = "QUOTA_EXCEEDED"


class BillingProviderError(DinnerSurpriseError):
    """Transient Stripe failure (network, timeout, rate limit, 5xx).

    Never to be interpreted as the subscription being gone.
    """

    status_code = 503
    error_code = "BILLING_UNAVAILABLE"


class BillingSubscriptionNotFound(DinnerSurpriseError):
    """Stripe reports the subscription does not exist (deleted upstream)."""

    status_code = 404


class AIProviderError(DinnerSurpriseError):
    status_code = 500
    error_code = "AI_PROVIDER_ERROR"


class AIProviderUnavailableError(AIProviderError):
    """The AI account cannot serve requests until an operator tops it up."""

    status_code = 503
    error_code = "INSUFFICIENT_BALANCE"


class CompensationError(DinnerSurpriseError):
    """A compensating write (counter rollback) failed."""

    status_code = 500


class AIProviderTimeoutError(AIProviderError):
    """AI provider timed out or could not be reached."""

    status_code = 503
    error_code = "AI_UNAVAILABLE"
