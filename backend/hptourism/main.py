"""
HP Tourism Homestay Payments: FastAPI Application Entry Point

Aggregates the routers, configures logging and middleware, and initializes
the database on startup.
"""
import time
from datetime import datetime

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy import text

from hptourism.config import get_settings
from hptourism.database import SessionLocal, init_db
from hptourism.himkosh.exceptions import HimKoshError
from hptourism.logging_config import configure_logging
from hptourism.routes import himkosh_router
from hptourism.routes.himkosh import get_gateway

settings = get_settings()
configure_logging(settings)
logger = structlog.get_logger(__name__)

# ─── Application Instance ───────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Registration-fee payments for the Himachal Pradesh homestay portal through "
        "the HimKosh Cyber Treasury Portal: challan initiation, treasury callback, "
        "certificate issue and double verification."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# ─── Startup / Shutdown ──────────────────────────────────────────────
BOOT_TIME = time.time()


@app.on_event("startup")
def on_startup():
    """Initialize database tables and log boot info."""
    init_db()
    logger.info(
        "service_started",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        time=datetime.now().isoformat(),
        himkosh_merchant="configured" if settings.HIMKOSH_MERCHANT_CODE else "missing",
        debug=settings.DEBUG,
    )


@app.on_event("shutdown")
def on_shutdown():
    if get_gateway.cache_info().currsize:
        get_gateway().close()


# ─── Middleware ──────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every API request with timing."""
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 1)

    if request.url.path.startswith("/api"):
        logger.info(
            "request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=duration,
        )

    return response


# ─── Error Handling ──────────────────────────────────────────────────
@app.exception_handler(HimKoshError)
async def himkosh_error_handler(request: Request, exc: HimKoshError):
    """Errors raised while building dependencies (e.g. missing production config)."""
    logger.error("himkosh_error", path=request.url.path, error=exc.message, status=exc.status_code)
    if request.url.path.endswith("/callback"):
        return PlainTextResponse("Payment processing unavailable", status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ─── API Routers ─────────────────────────────────────────────────────
app.include_router(himkosh_router)


@app.get("/health", tags=["Health"])
def deep_health():
    """Health check including database connectivity."""
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception as exc:
        logger.warning("health_db_unreachable", error=str(exc))
    finally:
        db.close()

    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else "disconnected",
        "himkosh_merchant": "configured" if settings.HIMKOSH_MERCHANT_CODE else "placeholder",
        "uptime_seconds": round(time.time() - BOOT_TIME, 1),
        "version": settings.APP_VERSION,
    }
