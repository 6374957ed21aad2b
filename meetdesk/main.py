import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from meetdesk.api.routes import appointments, slots
from meetdesk.core.config import _ENV_FILE, settings, validate_runtime_config
from meetdesk.core.db import async_session_maker, init_db
from meetdesk.core.errors import BookingError
from meetdesk.services import events
from meetdesk.services.appointment_service import expire_stale_requests
from meetdesk.services.email_service import notify_status_change

if os.getenv("ENV") != "production":
    logging.basicConfig(level=logging.DEBUG)
else:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}',
    )
logger = logging.getLogger(__name__)


async def _run_request_expiry() -> None:
    """Cancel pending requests left unanswered past pending_expiry_days."""
    try:
        async with async_session_maker() as session:
            n = await expire_stale_requests(session)
            if n:
                logger.info(
                    "Request expiry: cancelled %d pending request(s) older than %d days",
                    n, settings.pending_expiry_days,
                )
    except Exception as e:
        logger.exception("Request expiry failed: %s", e)


async def _expiry_loop() -> None:
    while True:
        await asyncio.sleep(settings.expiry_check_interval_hours * 60 * 60)
        await _run_request_expiry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    validate_runtime_config()
    logger.info("Loading .env from: %s (exists: %s)", _ENV_FILE, _ENV_FILE.exists())
    if settings.create_tables_on_startup:
        await init_db()

    if settings.email_enabled:
        events.subscribe(notify_status_change)
        logger.info("Email notifications: enabled (SMTP %s)", settings.smtp_host)
    else:
        logger.warning("Email notifications: NOT configured. Set SMTP_* and FROM_EMAIL in %s", _ENV_FILE)

    task = None
    if settings.pending_expiry_days is not None:
        logger.info(
            "Pending requests expire %d days after their date (checked every %dh)",
            settings.pending_expiry_days, settings.expiry_check_interval_hours,
        )
        await _run_request_expiry()
        task = asyncio.create_task(_expiry_loop())
    yield
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    events.unsubscribe(notify_status_change)


app = FastAPI(
    title="MeetDesk API",
    description="Consultation booking between students and teachers: requests, bookings, lifecycle",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(slots.router, prefix="/api/v1")
app.include_router(appointments.router, prefix="/api/v1")


def _cors_headers(origin: str | None) -> dict[str, str]:
    """Add CORS headers to error responses so the browser doesn't block them."""
    headers = {
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Authorization, Content-Type",
    }
    if origin and origin in settings.cors_origins_list:
        headers["Access-Control-Allow-Origin"] = origin
    elif settings.cors_origins_list:
        headers["Access-Control-Allow-Origin"] = settings.cors_origins_list[0]
    return headers


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "kind": exc.kind},
        headers=_cors_headers(request.headers.get("origin")),
    )


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Storage temporarily unavailable", "kind": "storage_error"},
        headers=_cors_headers(request.headers.get("origin")),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return actual error in JSON; include CORS so 500 responses are not blocked by browser."""
    origin = request.headers.get("origin")
    headers = _cors_headers(origin)
    if isinstance(exc, HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=headers,
        )
    logger.exception("Unhandled exception: %s", exc)
    detail = f"{type(exc).__name__}: {str(exc)}"
    return JSONResponse(
        status_code=500,
        content={"detail": detail},
        headers=headers,
    )


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
