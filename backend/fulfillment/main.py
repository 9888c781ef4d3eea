"""
Vendor Fulfillment Backend
FastAPI application entry point

- Vendor claim / label / handover routes and admin routes
- Auto-reversal + label integrity jobs with heartbeat
- Rate limiting with SlowAPI
- Error sanitization middleware
- Health endpoint with DB ping
- Shipway HTTP client lifecycle management
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from fulfillment.api.routes import admin_orders, orders
from fulfillment.core.config import settings
from fulfillment.core.database import AsyncSessionLocal
from fulfillment.core.error_handler import ErrorSanitizationMiddleware, fulfillment_error_handler
from fulfillment.core.exceptions import FulfillmentError
from fulfillment.core.rate_limit import limiter, rate_limit_exceeded_handler
from fulfillment.jobs.fulfillment_jobs import FulfillmentJobRunner
from fulfillment.services.auto_reversal import AutoReversalSweeper
from fulfillment.services.shipway_client import create_shipway_client

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create the shared Shipway client and sweeper, start background jobs,
    and release everything on shutdown.
    """
    app.state.shipway = create_shipway_client()
    app.state.auto_reversal_sweeper = AutoReversalSweeper()
    app.state.job_runner = FulfillmentJobRunner(app.state.auto_reversal_sweeper)

    if settings.AUTO_REVERSAL_ENABLED:
        await app.state.job_runner.start()
        logger.info("Auto-reversal jobs ENABLED")
    else:
        logger.info("Auto-reversal jobs DISABLED via config")

    yield

    await app.state.job_runner.stop()

    # Close HTTP client to prevent connection leaks
    await app.state.shipway.close()
    logger.info("Shipway HTTP client closed")


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    description="""
## Vendor Fulfillment API

Vendors claim marketplace order lines, download shipping labels and hand
over packages. Orders shared between vendors are split into clone orders so
each vendor ships their own lines.

### Authentication
All endpoints require a vendor bearer token. Admin endpoints require the
admin role.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Domain errors carry their own status code
app.add_exception_handler(FulfillmentError, fulfillment_error_handler)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "code": "VALIDATION_ERROR",
            "message": f"{field}: {message}" if field else message,
        },
    )


# Error sanitization (catches unhandled exceptions)
app.add_middleware(ErrorSanitizationMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(orders.router, prefix="/api/orders", tags=["Orders"])
app.include_router(admin_orders.router, prefix="/api/orders", tags=["Admin - Orders"])


@app.get("/", tags=["Health"])
async def root():
    return {
        "message": settings.APP_NAME,
        "version": "1.0.0",
        "status": "operational",
    }


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check with DB ping and job heartbeat.
    Returns 503 if database is unreachable.
    """
    runner = getattr(request.app.state, "job_runner", None)
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "jobs": runner.heartbeat if runner else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status


def run() -> None:
    """Serve the API with uvicorn on $PORT (default 8000)."""
    import uvicorn

    value = os.environ.get("PORT", "8000")
    try:
        port = int(value)
    except ValueError as exc:
        raise SystemExit(f"Invalid PORT '{value}': {exc}") from exc

    uvicorn.run(
        "fulfillment.main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    run()
