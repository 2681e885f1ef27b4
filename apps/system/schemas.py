# ============================================================================
# apps/system/schemas.py - System request/response models
# ============================================================================

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime


class StatusResponse(BaseModel):
    success: bool
    message: str
    details: Optional[Dict[str, Any]] = None


class ReloadRequest(BaseModel):
    scope: str = Field(default="all", pattern=r'^(pjsip|dialplan|all)$')


class ReloadResponse(BaseModel):
    success: bool
    message: str
    scope: str
    method: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None


class BackupInfo(BaseModel):
    filename: str
    path: str
    size: int
    created: datetime


class BackupListResponse(BaseModel):
    success: bool
    config: str
    backups: List[BackupInfo]


class EngineStatusResponse(BaseModel):
    success: bool
    status: str
    checked_at: Optional[str] = None
    endpoints: Dict[str, Any] = Field(default_factory=dict)


class SystemHealth(BaseModel):
    status: str
    version: str
    database_status: str
    active_apps: List[str]
