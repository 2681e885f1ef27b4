# ============================================================================
# apps/system/routes.py - System routes
# ============================================================================

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .schemas import (
    StatusResponse, SystemHealth, ReloadRequest, ReloadResponse, BackupInfo,
    BackupListResponse, EngineStatusResponse
)
from apps.reconcile import get_orchestrator
from apps.reconcile.orchestrator import ReconcileOrchestrator
from shared.auth import verify_api_key
from shared.database import get_db
from shared.utils import list_backups
from config import APP_NAME, APP_VERSION, ENABLED_APPS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["system"])


@router.get("/", response_model=StatusResponse)
async def root():
    """API status endpoint"""
    return StatusResponse(
        success=True,
        message=f"{APP_NAME} is running",
        details={
            "version": APP_VERSION,
            "apps": ENABLED_APPS,
            "docs": "/docs",
            "redoc": "/redoc"
        }
    )


@router.get("/health", response_model=SystemHealth)
async def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError as e:
        logger.error(f"Health check database error: {e}")
        db_status = f"error: {str(e)}"

    return SystemHealth(
        status="healthy" if db_status == "connected" else "degraded",
        version=APP_VERSION,
        database_status=db_status,
        active_apps=ENABLED_APPS
    )


@router.post("/api/v1/system/reload", response_model=ReloadResponse)
async def reload_asterisk(
    data: ReloadRequest,
    orchestrator: ReconcileOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(verify_api_key)
):
    """Reload pjsip, the dialplan or everything"""
    result = orchestrator.reloader.reload(data.scope)
    return ReloadResponse(
        success=result.success,
        message=f"Reloaded {data.scope}" if result.success else f"Reload of {data.scope} failed",
        scope=result.scope,
        method=result.method,
        output=result.output,
        error=result.error
    )


@router.get("/api/v1/system/backups/{config}", response_model=BackupListResponse)
async def get_backups(
    config: str,
    orchestrator: ReconcileOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(verify_api_key)
):
    stores = {"pjsip": orchestrator.pjsip_store, "extensions": orchestrator.dialplan_store}
    store = stores.get(config)
    if store is None:
        raise HTTPException(status_code=404, detail="Unknown config, use pjsip or extensions")
    backups = list_backups(store.path, store.backup_dir)
    return BackupListResponse(
        success=True,
        config=store.path,
        backups=[BackupInfo(**backup) for backup in backups]
    )


@router.get("/api/v1/system/endpoints", response_model=EngineStatusResponse)
async def engine_endpoints(
    orchestrator: ReconcileOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(verify_api_key)
):
    """Registration state as reported by Asterisk, possibly stale"""
    if orchestrator.status_service is None:
        return EngineStatusResponse(success=False, status="unknown")
    result = orchestrator.status_service.list_endpoints()
    return EngineStatusResponse(
        success=result["status"] != "unknown",
        status=result["status"],
        checked_at=result["checked_at"],
        endpoints=result["endpoints"] or {}
    )


@router.get("/api/v1/system/endpoints/{name}", response_model=dict)
async def engine_endpoint_detail(
    name: str,
    orchestrator: ReconcileOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(verify_api_key)
):
    if orchestrator.status_service is None:
        raise HTTPException(status_code=503, detail="Endpoint status is not available")
    return orchestrator.status_service.endpoint_detail(name)
