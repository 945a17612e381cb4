import asyncio
import logging
import os
from dotenv import load_dotenv  # load .env variables

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

import tourneyhub.database as database
from tourneyhub.env_check import check_environment
from tourneyhub.errors import ConflictError, TourneyError, TransientError
from tourneyhub.services import get_notification_cleanup, get_status_updater

# ----- Load environment variables -----
load_dotenv()

# ----- Logging -----
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger("tourneyhub")

# ----- Routers -----
from tourneyhub.routes.auth import router as auth_router
from tourneyhub.routes.tournaments import router as tournament_router
from tourneyhub.routes.teams import router as team_router
from tourneyhub.routes.registrations import router as registration_router
from tourneyhub.routes.notifications import router as notification_router
from tourneyhub.routes.admin_users import router as admin_users_router
from tourneyhub.routes.admin_teams import router as admin_teams_router
from tourneyhub.routes.diagnostic import router as diagnostic_router

API_PREFIX = "/api"

# ----- FastAPI app -----
app = FastAPI(
    title="TourneyHub API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# ----- CORS (enabled only if ALLOWED_ORIGINS is set) -----
raw_origins = os.getenv("ALLOWED_ORIGINS", "").strip()
if raw_origins:
    allowed_origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With"
        ],
        max_age=86400,
    )

# ----- Include routers -----
for router in (
    auth_router,
    tournament_router,
    team_router,
    registration_router,
    notification_router,
    admin_users_router,
    admin_teams_router,
    diagnostic_router,
):
    app.include_router(router, prefix=API_PREFIX)


# ----- Error rendering -----
@app.exception_handler(TourneyError)
async def tourney_error_handler(request: Request, exc: TourneyError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


@app.exception_handler(DBAPIError)
async def database_error_handler(request: Request, exc: DBAPIError):
    if isinstance(exc, IntegrityError):
        error = ConflictError("Request conflicts with existing data")
    else:
        logger.error("Database error on %s %s: %s", request.method, request.url.path, exc.orig)
        error = TransientError("Database temporarily unavailable, please retry")
    return JSONResponse(
        status_code=error.status_code,
        content={"detail": error.message, "code": error.code},
    )


def _safe_url(url: str) -> str:
    return make_url(url).render_as_string(hide_password=True)


@app.on_event("startup")
async def on_startup():
    """Ensure database connectivity with simple retry logic."""

    check_environment()
    logger.info("Using DB: %s", _safe_url(database.CURRENT_DATABASE_URL))

    max_attempts = int(os.getenv("DB_INIT_MAX_ATTEMPTS", "10"))
    base_delay = float(os.getenv("DB_INIT_RETRY_SECONDS", "1.0"))

    attempt = 0

    def sqlite_fallback_allowed() -> bool:
        """Decide if we may fall back to the bundled SQLite database."""

        configured = os.getenv("DB_ALLOW_SQLITE_FALLBACK")
        if configured is not None:
            return configured.lower() in {"1", "true", "yes", "on"}
        return database.CURRENT_DATABASE_URL == database.DEFAULT_SQLITE_URL

    while True:
        attempt += 1
        try:
            await database.init_models()
        except (OperationalError, DBAPIError, OSError) as exc:  # pragma: no cover - depends on timing
            if attempt >= max_attempts:
                if sqlite_fallback_allowed() and (
                    database.CURRENT_DATABASE_URL != database.DEFAULT_SQLITE_URL
                ):
                    logger.error(
                        "Database not reachable at %s after %s attempts: %s."
                        " Falling back to local SQLite for development.",
                        _safe_url(database.CURRENT_DATABASE_URL),
                        attempt,
                        exc,
                    )
                    await database.engine.dispose()
                    database.configure_engine(database.DEFAULT_SQLITE_URL)
                    attempt = 0
                    continue

                logger.exception("Database not reachable after %s attempts", attempt)
                raise

            wait_time = base_delay * min(2 ** (attempt - 1), 8)
            logger.warning(
                "Database not ready (attempt %s/%s): %s. Retrying in %.1f seconds...",
                attempt,
                max_attempts,
                exc,
                wait_time,
            )
            await asyncio.sleep(wait_time)
        else:
            logger.info(
                "TourneyHub API started and database tables ensured (using %s).",
                _safe_url(database.CURRENT_DATABASE_URL),
            )
            await get_status_updater().start()
            await get_notification_cleanup().start()
            break


# ----- Health check endpoint -----
@app.get("/health", tags=["meta"])
async def health():
    return {"ok": True}


# ----- Shutdown: stop background tasks -----
@app.on_event("shutdown")
async def on_shutdown():
    await get_status_updater().stop()
    await get_notification_cleanup().stop()
