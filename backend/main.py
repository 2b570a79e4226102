import time
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from jose import JWTError

from config import settings
from database import AsyncSessionLocal, init_db, close_db
from errors import LanWakeError
from routers import auth_router, users_router, devices_router
from services.monitor import DeviceMonitor
from services.storage import Storage
from utils.logging_utils import setup_logging, get_logger
from utils.audit import audit

# Configure logging: INFO by default, DEBUG via LOG_LEVEL
setup_logging(level=settings.LOG_LEVEL)
logger = get_logger(__name__)


async def bootstrap_admin() -> None:
    """Create the local admin from env vars if no user with that name exists."""
    if not (settings.LOCAL_ADMIN_USERNAME and settings.LOCAL_ADMIN_PASSWORD):
        return

    from sqlalchemy import select as sa_select
    from auth.passwords import PASSWORD_MAX_BYTES, hash_password
    from models import Role, User

    if len(settings.LOCAL_ADMIN_PASSWORD.encode("utf-8")) > PASSWORD_MAX_BYTES:
        logger.error(
            f"LOCAL_ADMIN_PASSWORD exceeds {PASSWORD_MAX_BYTES} bytes; "
            "bootstrap admin not created"
        )
        return

    async with AsyncSessionLocal() as db:
        result = await db.execute(
            sa_select(User).where(User.username == settings.LOCAL_ADMIN_USERNAME)
        )
        if result.scalar_one_or_none():
            return
        admin = User(
            username=settings.LOCAL_ADMIN_USERNAME,
            password_hash=hash_password(settings.LOCAL_ADMIN_PASSWORD),
            role=Role.ADMIN.value,
        )
        db.add(admin)
        await db.commit()
        logger.info(f"Bootstrap admin user '{settings.LOCAL_ADMIN_USERNAME}' created")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    logger.info("=" * 60)
    logger.info("LANWAKE STARTING UP")
    logger.info(f"App: {settings.APP_NAME} v{settings.APP_VERSION}")

    start = time.perf_counter()
    await init_db()
    logger.info(
        f"Database initialized in {(time.perf_counter() - start) * 1000:.1f}ms"
    )

    await bootstrap_admin()

    monitor = None
    if settings.MONITOR_ENABLED:
        monitor = DeviceMonitor(
            Storage(AsyncSessionLocal),
            interval=settings.MONITOR_INTERVAL_SECONDS,
            probe_timeout=settings.PROBE_TIMEOUT_SECONDS,
            max_concurrency=settings.PROBE_CONCURRENCY,
        )
        await monitor.start()
    else:
        logger.info("Device monitor disabled (MONITOR_ENABLED=false)")
    app.state.monitor = monitor

    # Run startup health checks
    from services.health import run_health_checks
    health = await run_health_checks(monitor)
    for check in health.checks:
        status_icon = "+" if check.status == "ok" else "!"
        detail = ""
        if check.message:
            detail += f" ({check.message})"
        if check.response_time_ms is not None:
            detail += f" [{check.response_time_ms:.1f}ms]"
        logger.info(f"  {status_icon} {check.name}: {check.status}{detail}")
    if health.status != "healthy":
        logger.warning(f"STARTUP HEALTH: {health.status.upper()} - some checks failed")

    logger.info("STARTUP COMPLETE - Ready to accept requests")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("LANWAKE SHUTTING DOWN")
    if monitor is not None:
        await monitor.stop()
    await close_db()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)


# ── Custom validation error handler ───────────────────────────────────

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
):
    """
    Return user-friendly error messages when request validation fails.

    Instead of Pydantic's raw error output, this returns a structured
    response with per-field error messages.
    """
    errors = []
    for error in exc.errors():
        # Build a dotted field path (skip the top-level "body"/"query" prefix)
        loc_parts = [str(x) for x in error.get("loc", [])]
        if loc_parts and loc_parts[0] in ("body", "query", "path"):
            loc_parts = loc_parts[1:]
        field = ".".join(loc_parts) if loc_parts else "unknown"

        # Extract the human-readable message
        msg = error.get("msg", "Validation error")
        # Pydantic wraps custom ValueError messages in "Value error, ..."
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]

        errors.append({
            "field": field,
            "message": msg,
            "type": error.get("type", "unknown"),
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Validation failed",
            "errors": errors,
        },
    )


@app.exception_handler(LanWakeError)
async def lanwake_exception_handler(request: Request, exc: LanWakeError):
    """Map service errors to their HTTP status with a plain ``detail`` message."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


# ── Request ID + request logging middleware ───────────────────────────

@app.middleware("http")
async def request_lifecycle(request: Request, call_next):
    """Assign a request ID, log timing, and add the ID to response headers."""
    request_id = str(uuid.uuid4())
    audit.set_request_id(request_id)

    # Extract actor from JWT for audit context
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        try:
            from auth.jwt_service import verify_access_token
            payload = verify_access_token(auth_header[7:])
            audit.set_actor(f"user:{payload.get('username') or payload.get('sub', 'unknown')}")
        except JWTError:
            # Rejected properly by the auth dependency
            pass

    start_time = time.perf_counter()
    logger.debug(f"→ {request.method} {request.url.path}")

    response = await call_next(request)

    duration_ms = (time.perf_counter() - start_time) * 1000
    status_indicator = "+" if response.status_code < 400 else "!"
    logger.info(
        f"{status_indicator} {request.method} {request.url.path} "
        f"[{response.status_code}] {duration_ms:.1f}ms rid={request_id[:8]}"
    )

    response.headers["X-Request-ID"] = request_id
    return response


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)

# Include routers
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(devices_router)


@app.get("/health", tags=["health"])
async def health_check(request: Request):
    """Health check endpoint with component status breakdown."""
    from services.health import run_health_checks
    health = await run_health_checks(getattr(request.app.state, "monitor", None))
    status_code = 200 if health.status in ("healthy", "degraded") else 503
    return JSONResponse(content=health.model_dump(), status_code=status_code)


@app.get("/api", tags=["root"])
async def api_root():
    """API root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "openapi": "/openapi.json",
        "endpoints": {
            "auth": "/api/auth",
            "users": "/api/users",
            "devices": "/api/devices",
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
