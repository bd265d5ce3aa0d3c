"""FastAPI Application Entry Point."""

import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from dinner_surprise.api.deps import get_recipe_generator
from dinner_surprise.core.config import settings
from dinner_surprise.core.database import dispose_engine
from dinner_surprise.core.errors import DinnerSurpriseError, QuotaExceededError
from dinner_surprise.core.rate_limit import limiter
from dinner_surprise.providers.stripe_billing import configure_stripe

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize Sentry for error tracking
# IMPORTANT: Must be done BEFORE creating FastAPI app
if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        profiles_sample_rate=settings.SENTRY_PROFILES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        send_default_pii=False,
        release=f"dinner-surprise-backend@{os.getenv('GIT_COMMIT', 'dev')}",
        attach_stacktrace=True,
        max_breadcrumbs=50,
    )
    logger.info(f"Sentry initialized (environment: {settings.SENTRY_ENVIRONMENT})")
else:
    logger.info("Sentry DSN not set - Error tracking disabled")

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Dinner Surprise - AI recipes with Stripe-backed subscription plans",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Configure rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Origins come from a validated whitelist (no wildcards)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
        "X-Requested-With",
    ],
    max_age=settings.CORS_MAX_AGE,
)


@app.exception_handler(DinnerSurpriseError)
async def dinner_surprise_error_handler(request: Request, exc: DinnerSurpriseError) -> JSONResponse:
    """Translate application errors that reached the HTTP layer."""
    if isinstance(exc, QuotaExceededError):
        logger.info(f"Quota reached on {request.url.path}: {exc.message}")
    elif exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")

    content: dict = {"detail": exc.message}
    if exc.error_code:
        content["errorCode"] = exc.error_code
    return JSONResponse(status_code=exc.status_code, content=content)


@app.on_event("startup")
async def startup_event() -> None:
    """Configure the Stripe SDK once per process."""
    configure_stripe()
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.warning("STRIPE_WEBHOOK_SECRET not set - webhook deliveries will be rejected")
    if not settings.DEEPSEEK_API_KEY:
        logger.warning("DEEPSEEK_API_KEY not set - recipe generation returns mock recipes")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """Release the AI client and pooled database connections."""
    if get_recipe_generator.cache_info().currsize:
        await get_recipe_generator().close()
    await dispose_engine()


@app.get("/api/v1/health", tags=["health"])
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "service": settings.APP_NAME,
            "environment": settings.APP_ENV,
        },
    )


@app.get("/", tags=["root"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": "Welcome to Dinner Surprise API",
        "docs": "/api/docs",
        "health": "/api/v1/health",
    }


# Include API v1 routers
from dinner_surprise.api.v1 import api_router

app.include_router(api_router, prefix=settings.API_V1_PREFIX)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "dinner_surprise.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
