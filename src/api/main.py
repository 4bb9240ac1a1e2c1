import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.api.deps import get_context, get_rules, get_settings
from src.app_shell.config import validate_ops_rules
from src.app_shell.context import run_migrations
from src.domain.errors import (
    AlreadyFinalizedError,
    AlreadyLinkedError,
    AlreadyUsedError,
    ConflictError,
    ExpiredError,
    InviteError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS: list[tuple[type[InviteError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AlreadyUsedError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (AlreadyFinalizedError, status.HTTP_409_CONFLICT),
    (AlreadyLinkedError, status.HTTP_409_CONFLICT),
    (ExpiredError, status.HTTP_410_GONE),
    (ValidationError, 422),
]


def status_for(exc: InviteError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    # Load rules, migrate and validate on startup (fail-fast)
    try:
        rules = get_rules(settings)
        validate_ops_rules(rules)
        if not settings.secret_key:
            raise RuntimeError("INVITES_SECRET_KEY must be set to verify identity tokens")
        run_migrations(settings.db_path(rules))
        logger.info("Rules loaded from %s", settings.rules_path)
    except Exception as e:
        print(f"CRITICAL: Startup failed: {e}", file=sys.stderr)
        sys.exit(1)

    scheduler = get_context().create_scheduler()
    scheduler.start()
    yield
    scheduler.stop()


app = FastAPI(
    title="Invite Registry API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.exception_handler(InviteError)
async def invite_error_handler(request: Request, exc: InviteError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content={"detail": exc.message, "code": exc.code, "invite_code": exc.invite_code},
    )


@app.exception_handler(UnavailableError)
async def unavailable_handler(request: Request, exc: UnavailableError) -> JSONResponse:
    logger.warning("Store unavailable during %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": exc.message, "code": exc.code},
        headers={"Retry-After": "1"},
    )


# --- Routers ---
from src.api.routes import accounts, admin_invites, invites, registration  # noqa: E402

app.include_router(invites.router, prefix="/api/invites", tags=["Invites"])
app.include_router(admin_invites.router, prefix="/api/admin/invites", tags=["Admin Invites"])
app.include_router(registration.router, prefix="/api/register", tags=["Registration"])
app.include_router(accounts.router, prefix="/api/accounts", tags=["Accounts"])


@app.get("/health")
def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {"status": "ok", "service": "api"}
