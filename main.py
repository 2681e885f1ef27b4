# ============================================================================
# main.py - PBX reconciliation service
# ============================================================================

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import asyncio
import logging
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError

from config import (
    APP_NAME, APP_VERSION, APP_DESCRIPTION,
    CORS_ORIGINS, HOST, PORT, LOG_LEVEL, AUTO_SYNC_ON_STARTUP
)
from shared.database import init_database, SessionLocal
from shared.exceptions import ReconcileError
from shared.logging import setup_logging

# Import routers
from apps.reconcile import get_orchestrator
from apps.extensions.routes import router as extensions_router
from apps.trunks.routes import router as trunks_router
from apps.dialplan.routes import router as dialplan_router
from apps.sync.routes import router as sync_router
from apps.system.routes import router as system_router

logger = logging.getLogger(__name__)


def run_startup_sync() -> None:
    """Bring database and pjsip.conf together once before serving requests"""
    db = SessionLocal()
    try:
        result = get_orchestrator().auto_reconcile(db, force=True)
        if result.success:
            logger.info("✅ Startup sync complete")
        else:
            logger.warning(f"⚠️ Startup sync finished with errors: {'; '.join(result.errors)}")
    except (ReconcileError, SQLAlchemyError) as e:
        logger.error(f"❌ Startup sync failed: {e}")
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize application on startup and cleanup on shutdown"""
    setup_logging()
    logger.info(f"🚀 Starting {APP_NAME}...")

    if init_database():
        logger.info("✅ Database ready")
    else:
        logger.warning("⚠️ Database initialization had issues")

    if AUTO_SYNC_ON_STARTUP:
        await asyncio.to_thread(run_startup_sync)

    yield
    logger.info(f"👋 {APP_NAME} stopped")


# Create FastAPI app
app = FastAPI(
    title=APP_NAME,
    description=APP_DESCRIPTION,
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(system_router)
app.include_router(extensions_router)
app.include_router(trunks_router)
app.include_router(dialplan_router)
app.include_router(sync_router)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=HOST,
        port=PORT,
        reload=True,
        log_level=LOG_LEVEL,
        reload_dirs=["."],
        reload_excludes=["venv/*"]
    )
