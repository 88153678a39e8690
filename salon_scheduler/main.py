"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from salon_scheduler.core.config import settings
from salon_scheduler.core.structured_logging import build_log_context
from salon_scheduler.core.telemetry import configure_telemetry
from salon_scheduler.db.session import engine
from salon_scheduler.services.scheduling_errors import ErrorKind, SchedulingError

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=logging.DEBUG if settings.is_dev else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

logger = logging.getLogger(__name__)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,  # 10% of requests for performance monitoring
        send_default_pii=False,  # Client data stays out of Sentry
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from salon_scheduler.core.rate_limit import limiter


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Salon Scheduler API",
    description="Multi-tenant salon availability, booking and treatment series API",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

configure_telemetry(app, engine)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Tenant-ID", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)

# ============================================================================
# Scheduling errors
# ============================================================================

ERROR_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.INVALID_CONFIG: 500,
    ErrorKind.BOOKING_RULE_VIOLATION: 422,
    ErrorKind.SLOT_UNAVAILABLE: 409,
    ErrorKind.SCHEDULING_INFEASIBLE: 422,
    ErrorKind.UNAVAILABLE: 503,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.HOLD_EXPIRED: 410,
}


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    status_code = ERROR_STATUS_CODES.get(exc.kind, 400)
    context = build_log_context(
        request_id=request.headers.get("X-Request-ID"),
        route=request.url.path,
        method=request.method,
    )
    if status_code >= 500:
        logger.error("Scheduling error %s: %s", exc.kind.value, exc.message, extra=context)
    else:
        logger.info("Scheduling request rejected: %s", exc.kind.value, extra=context)

    headers = {"Retry-After": "1"} if exc.kind == ErrorKind.UNAVAILABLE else None
    return JSONResponse(status_code=status_code, content={"detail": exc.to_detail()}, headers=headers)


# ============================================================================
# Routers
# ============================================================================

from salon_scheduler.routers import availability, bookings, holds, series

app.include_router(availability.router, prefix="/availability", tags=["availability"])
app.include_router(bookings.router, prefix="/bookings", tags=["bookings"])
app.include_router(holds.router, prefix="/holds", tags=["holds"])
app.include_router(series.create_router, prefix="/booking-series", tags=["series"])
app.include_router(series.router, prefix="/series", tags=["series"])


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
