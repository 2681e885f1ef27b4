# ============================================================================
# apps/extensions/routes.py - Extension API
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
from .schemas import (
    ExtensionCreate, ExtensionUpdate, ExtensionResponse, ExtensionListResponse
)
from .services import ExtensionService

router = APIRouter(prefix="/api/v1/extensions", tags=["extensions"])


def get_service(db: Session = Depends(get_db),
                orchestrator: ReconcileOrchestrator = Depends(get_orchestrator)) -> ExtensionService:
    return ExtensionService(db, orchestrator)


@router.get("/", response_model=ExtensionListResponse)
async def list_extensions(
    enabled: Optional[bool] = None,
    service: ExtensionService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    """List extensions from the database"""
    extensions = service.list_extensions(enabled)
    return ExtensionListResponse(
        success=True,
        count=len(extensions),
        extensions=[ExtensionResponse.model_validate(e) for e in extensions]
    )


@router.get("/{number}", response_model=ExtensionResponse)
async def get_extension(
    number: str,
    service: ExtensionService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    extension = service.get_extension(number)
    if not extension:
        raise HTTPException(status_code=404, detail="Extension not found")
    return ExtensionResponse.model_validate(extension)


@router.post("/", response_model=MutationResponse, status_code=201)
async def create_extension(
    data: ExtensionCreate,
    service: ExtensionService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    """Create an extension, write its config and reload PJSIP"""
    try:
        extension, result = service.create_extension(data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if extension is None:
        raise HTTPException(status_code=500, detail="; ".join(result.errors))
    return to_response(
        result,
        f"Extension {extension.extension_number} created",
        data=ExtensionResponse.model_validate(extension).model_dump(mode="json")
    )


@router.put("/{number}", response_model=MutationResponse)
async def update_extension(
    number: str,
    data: ExtensionUpdate,
    service: ExtensionService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    extension, result = service.update_extension(number, data)
    if extension is None:
        raise HTTPException(status_code=404, detail="Extension not found")
    return to_response(
        result,
        f"Extension {number} updated",
        data=ExtensionResponse.model_validate(extension).model_dump(mode="json")
    )


@router.delete("/{number}", response_model=MutationResponse)
async def delete_extension(
    number: str,
    service: ExtensionService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    """Delete an extension and remove its managed block"""
    if not service.get_extension(number):
        raise HTTPException(status_code=404, detail="Extension not found")
    result = service.delete_extension(number)
    return to_response(result, f"Extension {number} deleted")


@router.get("/{number}/config", response_model=dict)
async def preview_extension_config(
    number: str,
    service: ExtensionService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    """Config text the extension renders to, without writing it"""
    extension = service.get_extension(number)
    if not extension:
        raise HTTPException(status_code=404, detail="Extension not found")
    adapter = service.orchestrator.adapter("extension")
    try:
        config = adapter.render(adapter.to_record(extension))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "extension_number": number, "config": config}
