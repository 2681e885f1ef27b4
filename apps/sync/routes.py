# ============================================================================
# apps/sync/routes.py - Database / config synchronization API
# ============================================================================

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from apps.reconcile import get_orchestrator
from apps.reconcile.orchestrator import ReconcileOrchestrator
from shared.auth import verify_api_key
from shared.database import get_db
from shared.exceptions import ReconcileError
from .schemas import SyncRequest, SyncAllRequest, AutoSyncRequest, SyncOutcome
from .services import SyncService

router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


def get_service(db: Session = Depends(get_db),
                orchestrator: ReconcileOrchestrator = Depends(get_orchestrator)) -> SyncService:
    return SyncService(db, orchestrator)


@router.get("/status", response_model=dict)
async def sync_status(
    service: SyncService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    """Classification of every extension and trunk"""
    try:
        status = service.status()
    except ReconcileError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, **status}


@router.post("/to-external", response_model=SyncOutcome)
async def sync_to_external(
    data: SyncRequest,
    service: SyncService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    """Write database state into pjsip.conf"""
    return service.to_external(data.kind, data.identity)


@router.post("/from-external", response_model=SyncOutcome)
async def sync_from_external(
    data: SyncRequest,
    service: SyncService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    """Import pjsip.conf definitions into the database"""
    return service.from_external(data.kind, data.identity)


@router.post("/all", response_model=SyncOutcome)
async def sync_all(
    data: SyncAllRequest,
    service: SyncService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    """Write every entity, removing blocks of entities that no longer exist"""
    return service.to_external(data.kind)


@router.post("/auto", response_model=SyncOutcome)
async def auto_sync(
    data: AutoSyncRequest,
    service: SyncService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    return service.auto(data.force)
