"""
Main FastAPI application
"""

from contextlib import asynccontextmanager
import asyncio
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
import logging
import time
from prometheus_client import make_asgi_app
import uuid

from turnstile import __version__
from turnstile.config import settings
from turnstile.core.database import init_db, close_db
from turnstile.core.redis import close_redis
from turnstile.core.logging import setup_logging
from turnstile.core.exceptions import TurnstileException
from turnstile.api.responses import error_body
from turnstile.api.v1.api import api_router
from turnstile.services import build_reservation_service, sweep_holds_periodically

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager
    """
    logger.info(f"Starting {settings.APP_NAME} v{__version__}")

    await init_db()
    logger.info("Database connection established")

    # Fails fast when the ticket secret is missing
    app.state.reservation_service = await build_reservation_service(settings)

    sweeper = None
    if settings.HOLD_SWEEP_INTERVAL_SECONDS > 0:
        sweeper = asyncio.create_task(
            sweep_holds_periodically(app.state.reservation_service, settings.HOLD_SWEEP_INTERVAL_SECONDS)
        )

    yield

    logger.info("Shutting down application")
    if sweeper is not None:
        sweeper.cancel()
    await close_db()
    if settings.SEAT_LOCK_BACKEND == "redis":
        await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    description="Seat reservations with encrypted QR tickets",
    version=__version__,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def track_requests(request: Request, call_next):
    """
    Add request ID and timing headers
    """
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(duration)
    return response


@app.exception_handler(TurnstileException)
async def turnstile_exception_handler(request: Request, exc: TurnstileException):
    logger.error(f"{exc.code}: {exc.message}", extra={"details": exc.details})
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.details)
    )


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc):
    logger.error(f"Internal server error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=error_body("INTERNAL_ERROR", "An internal server error occurred")
    )


@app.get("/health/live")
async def liveness():
    """Kubernetes liveness probe"""
    return {"status": "alive"}


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": settings.APP_NAME,
        "version": __version__,
        "environment": settings.APP_ENV,
        "api_docs": "/docs" if settings.DEBUG else None
    }


app.include_router(api_router, prefix=settings.API_PREFIX)

if settings.PROMETHEUS_ENABLED:
    app.mount("/metrics", make_asgi_app())

# Locally stored tickets are served by the app itself
if settings.ARTIFACT_BACKEND == "local":
    app.mount(
        "/artifacts",
        StaticFiles(directory=settings.ARTIFACT_LOCAL_DIR, check_dir=False),
        name="artifacts"
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "turnstile.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
