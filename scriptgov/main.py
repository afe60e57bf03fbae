"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scriptgov.core.config import settings
from scriptgov.core.middleware import RequestIdFilter, setup_middleware
from scriptgov.core.exceptions import ScriptGovernanceError
from scriptgov.db.session import get_db
from scriptgov.services.cache_service import cache_service

from scriptgov.api.users import router as users_router
from scriptgov.api.scripts import router as scripts_router
from scriptgov.api.versions import router as versions_router
from scriptgov.api.approvals import router as approvals_router
from scriptgov.api.admin import router as admin_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s",
)
for handler in logging.getLogger().handlers:
    handler.addFilter(RequestIdFilter())
logger = logging.getLogger("script_governance")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting %s", settings.APP_NAME)
    if not settings.CACHE_ENABLED:
        logger.info("List cache disabled")
    elif cache_service.health_check():
        logger.info("Redis connected")
    else:
        logger.warning("Redis not available; list queries will not be cached")

    yield

    logger.info("Shutting down %s", settings.APP_NAME)


app = FastAPI(
    title="Script Governance API",
    description="Role-based approval workflow and version control for SQL scripts",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Middleware
setup_middleware(app)


@app.exception_handler(ScriptGovernanceError)
async def governance_exception_handler(request: Request, exc: ScriptGovernanceError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "reason": exc.reason.value, "message": exc.message},
    )


# Register routers
app.include_router(users_router, prefix="/api")
app.include_router(scripts_router, prefix="/api")
app.include_router(versions_router, prefix="/api")
app.include_router(approvals_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/api/health")
async def health(db: Session = Depends(get_db)):
    """Health check: database and Redis."""
    db_ok = True
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Health check database query failed: %s", exc)
        db_ok = False

    if settings.CACHE_ENABLED:
        redis_status = "ok" if cache_service.health_check() else "error"
    else:
        redis_status = "disabled"

    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={
            "database": "ok" if db_ok else "error",
            "redis": redis_status,
            "status": "healthy" if db_ok else "degraded",
        },
    )
