# ============================================================================
# apps/dialplan/routes.py - Dialplan rule API
# ============================================================================

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from apps.reconcile import get_orchestrator
from apps.reconcile.orchestrator import ReconcileOrchestrator
from apps.sync.schemas import MutationResponse
from apps.sync.services import to_response
from shared.auth import verify_api_key
from shared.database import get_db
from shared.exceptions import ValidationError
from .schemas import (
    DialplanRuleCreate, DialplanRuleUpdate, DialplanRuleResponse, DialplanRuleListResponse,
    OutboundRuleCreate, ContextPreview, CONTEXT_PATTERN
)
from .services import DialplanService

router = APIRouter(prefix="/api/v1/dialplan", tags=["dialplan"])


def get_service(db: Session = Depends(get_db),
                orchestrator: ReconcileOrchestrator = Depends(get_orchestrator)) -> DialplanService:
    return DialplanService(db, orchestrator)


def _rule_data(rule) -> dict:
    return DialplanRuleResponse.model_validate(rule).model_dump(mode="json")


@router.get("/rules", response_model=DialplanRuleListResponse)
async def list_rules(
    context: Optional[str] = None,
    enabled: Optional[bool] = None,
    service: DialplanService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    rules = service.list_rules(context, enabled)
    return DialplanRuleListResponse(
        success=True,
        count=len(rules),
        rules=[DialplanRuleResponse.model_validate(r) for r in rules]
    )


@router.get("/rules/{rule_id}", response_model=DialplanRuleResponse)
async def get_rule(
    rule_id: int,
    service: DialplanService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    rule = service.get_rule(rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Dialplan rule not found")
    return DialplanRuleResponse.model_validate(rule)


@router.post("/rules", response_model=MutationResponse, status_code=201)
async def create_rule(
    data: DialplanRuleCreate,
    service: DialplanService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    rule, result = service.create_rule(data)
    if not result.database_changed:
        raise HTTPException(status_code=500, detail="; ".join(result.errors))
    return to_response(result, f"Dialplan rule {rule.name} created", data=_rule_data(rule))


@router.put("/rules/{rule_id}", response_model=MutationResponse)
async def update_rule(
    rule_id: int,
    data: DialplanRuleUpdate,
    service: DialplanService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    rule, result = service.update_rule(rule_id, data)
    if rule is None:
        raise HTTPException(status_code=404, detail="Dialplan rule not found")
    return to_response(result, f"Dialplan rule {rule_id} updated", data=_rule_data(rule))


@router.delete("/rules/{rule_id}", response_model=MutationResponse)
async def delete_rule(
    rule_id: int,
    service: DialplanService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    if not service.get_rule(rule_id):
        raise HTTPException(status_code=404, detail="Dialplan rule not found")
    result = service.delete_rule(rule_id)
    return to_response(result, f"Dialplan rule {rule_id} deleted")


@router.post("/rules/{rule_id}/toggle", response_model=MutationResponse)
async def toggle_rule(
    rule_id: int,
    service: DialplanService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    """Enable a disabled rule or comment out an enabled one"""
    rule, result = service.toggle_rule(rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="Dialplan rule not found")
    state = "enabled" if rule.enabled else "disabled"
    return to_response(result, f"Dialplan rule {rule_id} {state}", data=_rule_data(rule))


@router.post("/rules/outbound", response_model=MutationResponse, status_code=201)
async def create_outbound_rule(
    data: OutboundRuleCreate,
    service: DialplanService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    try:
        rule, result = service.create_outbound_rule(data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not result.database_changed:
        raise HTTPException(status_code=500, detail="; ".join(result.errors))
    return to_response(result, f"Outbound rule {rule.name} created", data=_rule_data(rule))


@router.post("/defaults", response_model=MutationResponse)
async def create_defaults(
    service: DialplanService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    created, result = service.create_defaults()
    message = "Default dialplan rules created" if created else "Default rules already exist"
    return to_response(result, message, data={"created": [_rule_data(rule) for rule in created]})


@router.get("/contexts", response_model=dict)
async def list_contexts(
    service: DialplanService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    return {"success": True, "contexts": service.contexts()}


@router.get("/preview", response_model=ContextPreview)
async def preview_context(
    context: str = Query("from-internal", pattern=CONTEXT_PATTERN),
    service: DialplanService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    """Rendered text for one context, without writing it"""
    count, config = service.preview(context)
    return ContextPreview(success=True, context=context, rule_count=count, config=config)


@router.post("/apply", response_model=MutationResponse)
async def apply_dialplan(
    service: DialplanService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    """Regenerate extensions.conf from the database and reload"""
    result = service.apply()
    return to_response(result, "Dialplan applied")


@router.get("/live", response_model=dict)
async def show_live_dialplan(
    context: Optional[str] = Query(None, pattern=CONTEXT_PATTERN),
    service: DialplanService = Depends(get_service),
    api_key: str = Depends(verify_api_key)
):
    result = service.show_live(context)
    if not result["success"]:
        raise HTTPException(status_code=503, detail=f"Failed to read live dialplan: {result['output']}")
    return result
