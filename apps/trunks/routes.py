# ============================================================================
# apps/trunks/routes.py - Trunk API
# ============================================================================

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from apps.reconcile import get_orchestrator
from apps.reconcile.orchestrator import ReconcileOrchestrator
from apps.sync.schemas import MutationResponse
from apps.sync.services import to_response
from shared.auth import verify_api_key
from shared.database import get_db
from shared.exceptions import ValidationError
from .schemas import TrunkCreate, TrunkUpdate, TrunkResponse, TrunkListResponse
from .services import TrunkService

router = APIRouter(prefix="/api/v1/trunks", tags=["trunks"])


def get_service(db: Session = Depends(get_db),
                orchestrator: ReconcileOrchestrator = Depends(get_orchestrator)) -> TrunkService:
    return TrunkService(db, orchestrator)


@router.get("/", response_model=TrunkListResponse)
async def list_trunks(
    enabled: Optional[bool] = None,
    service: TrunkService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    """List trunks in outbound priority order"""
    trunks = service.list_trunks(enabled)
    return TrunkListResponse(
        success=True,
        count=len(trunks),
        trunks=[TrunkResponse.model_validate(t) for t in trunks]
    )


@router.get("/{name}", response_model=TrunkResponse)
async def get_trunk(
    name: str,
    service: TrunkService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    trunk = service.get_trunk(name)
    if not trunk:
        raise HTTPException(status_code=404, detail="Trunk not found")
    return TrunkResponse.model_validate(trunk)


@router.post("/", response_model=MutationResponse, status_code=201)
async def create_trunk(
    data: TrunkCreate,
    service: TrunkService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    """Create a trunk, write its config, rebuild outbound routes and reload"""
    try:
        trunk, result = service.create_trunk(data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if trunk is None:
        raise HTTPException(status_code=500, detail="; ".join(result.errors))
    return to_response(
        result,
        f"Trunk {trunk.name} created",
        data=TrunkResponse.model_validate(trunk).model_dump(mode="json")
    )


@router.put("/{name}", response_model=MutationResponse)
async def update_trunk(
    name: str,
    data: TrunkUpdate,
    service: TrunkService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    trunk, result = service.update_trunk(name, data)
    if trunk is None:
        raise HTTPException(status_code=404, detail="Trunk not found")
    return to_response(
        result,
        f"Trunk {name} updated",
        data=TrunkResponse.model_validate(trunk).model_dump(mode="json")
    )


@router.delete("/{name}", response_model=MutationResponse)
async def delete_trunk(
    name: str,
    service: TrunkService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    if not service.get_trunk(name):
        raise HTTPException(status_code=404, detail="Trunk not found")
    result = service.delete_trunk(name)
    return to_response(result, f"Trunk {name} deleted")
