"""
api/main.py -- FastAPI application entry point for VerifyHub.

Exposes the account core (auth/) over HTTP under /api/v1.

Run with:      python main.py serve
               uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests    -- one log line per request with status and latency
  2. CORSMiddleware  -- adds CORS headers for allowed browser origins

App-wide dependency:
  attach_identity runs on every request (optional authentication). A request
  without a bearer token passes through with request.state.identity = None;
  a request with a bad token is rejected with 401 INVALID_TOKEN before any
  route logic runs.

Lifespan builds the collaborators once and hangs them on app.state:
  settings, store, token_issuer, mailer, accounts.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorResponse, HealthResponse
from api.routes.v1.users import router as users_router
from auth.accounts import AccountService
from auth.dependencies import attach_identity
from auth.mailer import build_mailer
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from core.config import get_settings
from core.errors import AppError

API_VERSION = "1.0.0"
MASKED_MESSAGE = "Something went wrong. Please try again later."

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("verifyhub.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the account core on startup and release the store on shutdown.

    Startup order follows the dependency graph: settings, then the three
    collaborators, then the service that holds them.
    """
    settings = get_settings()
    logger.info("VerifyHub API starting up (debug=%s)", settings.debug)

    app.state.settings = settings
    app.state.store = AccountStore(settings.database_url)
    app.state.token_issuer = TokenIssuer(settings.secret_key, settings.token_expire_seconds)
    app.state.mailer = build_mailer(settings)
    app.state.accounts = AccountService(
        store=app.state.store,
        mailer=app.state.mailer,
        tokens=app.state.token_issuer,
        otp_lifetime_seconds=settings.otp_expire_seconds,
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    logger.info(
        "Account core initialized (token lifetime %ds, OTP lifetime %ds)",
        settings.token_expire_seconds,
        settings.otp_expire_seconds,
    )

    yield

    app.state.store.close()
    logger.info("VerifyHub API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="VerifyHub API",
    description="Email-verified accounts, bearer-token login and role-based access.",
    version=API_VERSION,
    lifespan=lifespan,
    dependencies=[Depends(attach_identity)],
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the app, so the last one registered is outermost.
# @app.middleware("http") below is registered after CORS and therefore sees
# every request first, including CORS preflights.
#
# CORS origins come from settings at import time: Starlette refuses
# add_middleware() once the app has started, so the lifespan is too late.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allow_origins,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
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

app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves in the same envelope:
#   {"success": false, "errorCode": ..., "message": ..., "details": {...}}
# ---------------------------------------------------------------------------


def _error(status_code: int, error_code: str, message: str, details: dict | None = None) -> JSONResponse:
    body = ErrorResponse(error_code=error_code, message=message, details=details or {})
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError. Non-operational errors are logged and masked as a 500."""
    if not exc.is_operational:
        logger.error(
            "%s on %s %s: %s %s",
            exc.error_code,
            request.method,
            request.url.path,
            exc.message,
            exc.details,
            exc_info=exc.__cause__ is not None,
        )
        return _error(500, "INTERNAL_SERVER_ERROR", MASKED_MESSAGE)
    return JSONResponse(status_code=exc.http_status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 VALIDATION_ERROR listing every failing field.

    Each entry is {field, message, path}: field is the request part (body,
    path, query), path is the dotted location inside it.
    """
    errors = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ())]
        message = str(err.get("msg", "Invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        errors.append(
            {
                "field": loc[0] if loc else "body",
                "message": message,
                "path": ".".join(loc[1:]),
            }
        )
    return _error(400, "VALIDATION_ERROR", "Validation failed.", {"errors": errors})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap framework HTTP errors (404 unknown route, 405 wrong method) in the envelope."""
    return _error(exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "INTERNAL_SERVER_ERROR", MASKED_MESSAGE)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    try:
        database = "ok" if request.app.state.store.ping() else "error"
    except SQLAlchemyError:
        logger.warning("Health check: database ping failed", exc_info=True)
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": database},
    )
