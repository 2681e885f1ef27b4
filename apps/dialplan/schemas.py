# ============================================================================
# apps/dialplan/schemas.py - Dialplan rule request/response models
# ============================================================================

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from datetime import datetime

CONTEXT_PATTERN = r'^[a-zA-Z0-9_-]+$'
RULE_TYPE_PATTERN = r'^(pattern|internal|outbound|inbound|custom)$'


def validate_single_line(v: Optional[str]) -> Optional[str]:
    if v is not None and ('\n' in v or '\r' in v):
        raise ValueError('Value must be a single line')
    return v


class DialplanRuleBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    context: str = Field(default="from-internal", pattern=CONTEXT_PATTERN, max_length=50)
    pattern: str = Field(..., min_length=1, max_length=100, pattern=r'^[^\s,;\[\]]+$')
    priority: int = Field(default=1, ge=1)
    app: str = Field(default="Dial", pattern=r'^[A-Za-z][A-Za-z0-9_]*$', max_length=50)
    app_data: str = Field(default="", max_length=255)
    enabled: bool = True
    rule_type: str = Field(default="pattern", pattern=RULE_TYPE_PATTERN)
    description: Optional[str] = None
    sort_order: int = 0

    @field_validator('name', 'app_data', 'description')
    @classmethod
    def single_line(cls, v: Optional[str]) -> Optional[str]:
        return validate_single_line(v)


class DialplanRuleCreate(DialplanRuleBase):
    pass


class DialplanRuleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    context: Optional[str] = Field(None, pattern=CONTEXT_PATTERN, max_length=50)
    pattern: Optional[str] = Field(None, min_length=1, max_length=100, pattern=r'^[^\s,;\[\]]+$')
    priority: Optional[int] = Field(None, ge=1)
    app: Optional[str] = Field(None, pattern=r'^[A-Za-z][A-Za-z0-9_]*$', max_length=50)
    app_data: Optional[str] = Field(None, max_length=255)
    enabled: Optional[bool] = None
    rule_type: Optional[str] = Field(None, pattern=RULE_TYPE_PATTERN)
    description: Optional[str] = None
    sort_order: Optional[int] = None

    @field_validator('name', 'app_data', 'description')
    @classmethod
    def single_line(cls, v: Optional[str]) -> Optional[str]:
        return validate_single_line(v)


class OutboundRuleCreate(BaseModel):
    """Shortcut for a prefix rule dialing out through one trunk"""
    name: str = Field(..., min_length=1, max_length=100)
    prefix: str = Field(default="9", pattern=r'^[0-9]+$', max_length=10)
    trunk_name: str = Field(..., min_length=1, max_length=50)
    strip_digits: int = Field(default=1, ge=0, le=10)


class DialplanRuleResponse(BaseModel):
    id: int
    name: str
    context: str
    pattern: str
    priority: int
    app: str
    app_data: str
    enabled: bool
    rule_type: str
    description: Optional[str] = None
    sort_order: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DialplanRuleListResponse(BaseModel):
    success: bool
    count: int
    rules: List[DialplanRuleResponse]


class ContextPreview(BaseModel):
    success: bool
    context: str
    rule_count: int
    config: str
