# ============================================================================
# apps/sync/schemas.py - Sync request/response models
# ============================================================================

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List


class MutationResponse(BaseModel):
    """Outcome of a change that touches database, config file and engine"""
    success: bool
    message: str
    database_changed: bool = False
    file_changed: bool = False
    engine_reloaded: bool = False
    reload_success: Optional[bool] = None
    reload_output: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    data: Optional[Dict[str, Any]] = None


class SyncRequest(BaseModel):
    kind: str = Field(default="extension", pattern=r'^(extension|trunk)$')
    identity: Optional[str] = Field(None, min_length=1, max_length=50)


class SyncAllRequest(BaseModel):
    kind: Optional[str] = Field(None, pattern=r'^(extension|trunk)$')


class AutoSyncRequest(BaseModel):
    force: bool = False


class SyncOutcome(MutationResponse):
    processed: List[str] = Field(default_factory=list)
    imported: List[str] = Field(default_factory=list)
    exported: List[str] = Field(default_factory=list)
    conflicts: List[str] = Field(default_factory=list)
    ran: bool = True
