"""
api/main.py -- FastAPI application entry point for the identity service.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins

Lifespan handles startup (store, credential services, code purge task) and
shutdown (cancel purge task, dispose the engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.codes import ConfirmationCodeEngine
from auth.errors import EmailDispatchError, StorageError, ValidationError
from auth.mailer import SmtpEmailSender
from auth.ports import EmailSender
from auth.refresh import RefreshTokenManager
from auth.service import SessionService
from auth.store import IdentityStore
from auth.tokens import TokenSigner
from core.config import SessionConfig, Settings, get_settings

VERSION = "0.1.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("identity.api")


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def wire_services(app: FastAPI, store: IdentityStore, email_sender: EmailSender, config: SessionConfig) -> None:
    """Build the credential components and attach them to app.state.

    Shared by the real lifespan and the test fixtures so both run the same
    object graph.
    """
    signer = TokenSigner(config)
    app.state.store = store
    app.state.signer = signer
    app.state.session_service = SessionService(
        identities=store,
        codes=ConfirmationCodeEngine(store, config),
        refresh_tokens=RefreshTokenManager(store, config),
        signer=signer,
        email_sender=email_sender,
        code_ttl=config.code_ttl,
    )


def build_email_sender(settings: Settings) -> SmtpEmailSender:
    return SmtpEmailSender(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.email_from,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        timeout=settings.smtp_timeout_seconds,
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired confirmation code rows every `interval` seconds.

    Reads already ignore expired rows; this only keeps the table small.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            removed = app.state.store.purge_expired_codes()
        except StorageError:
            logger.warning("Expired code purge failed; retrying in %ds", interval)
            continue
        if removed:
            logger.info("Purged %d expired confirmation codes", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the store and services on startup, release them on shutdown."""
    logger.info("Identity service starting up")
    store = IdentityStore(_settings.database_url)
    if not _settings.smtp_host:
        logger.warning("SMTP_HOST is not set -- confirmation codes cannot be delivered")
    wire_services(app, store, build_email_sender(_settings), _settings.session_config())
    logger.info(
        "Credential services initialized (access_lifetime=%ds, code_ttl=%ds)",
        _settings.access_token_lifetime_seconds,
        _settings.code_ttl_seconds,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app, _settings.code_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.store.close()
    logger.info("Identity service shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Identity Service",
    description="Passwordless email-code login issuing access and refresh tokens.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization", "X-User-Id"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    log = logger.error if response.status_code >= 500 else logger.info
    log(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly. Dependency failures are logged with their chained cause
# and answered with a generic message -- no driver or SMTP detail leaks out.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(EmailDispatchError)
async def email_dispatch_handler(request: Request, exc: EmailDispatchError) -> JSONResponse:
    """The code is stored but was not delivered. Clients may simply retry."""
    logger.error("Email dispatch failed on %s %s: %s", request.method, request.url.path, exc)
    return _error_response(502, "failed_to_send_code", "Failed to send confirmation code.")


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return _error_response(503, "storage_unavailable", "The service is temporarily unavailable.")


@app.exception_handler(ValidationError)
async def domain_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _error_response(400, "invalid_request", str(exc))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or headers fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a dict detail ({"code", "message"}).
    When detail is already a dict, use it directly as the error field.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and database reachability."""
    database = "ok" if request.app.state.store.ping() else "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
