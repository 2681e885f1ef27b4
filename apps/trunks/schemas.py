# ============================================================================
# apps/trunks/schemas.py - Trunk request/response models
# ============================================================================

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from datetime import datetime

from apps.extensions.schemas import validate_codec_list

HOST_PATTERN = r'^[a-zA-Z0-9.:_-]+$'


class TrunkBase(BaseModel):
    host: str = Field(..., min_length=1, max_length=255, pattern=HOST_PATTERN)
    port: int = Field(default=5060, ge=1, le=65535)
    username: Optional[str] = Field(None, max_length=100)
    transport: str = Field(default="udp", pattern=r'^(udp|tcp|tls)$')
    codecs: List[str] = Field(default_factory=lambda: ["ulaw", "alaw", "g722"])
    context: str = Field(default="from-trunk", pattern=r'^[a-zA-Z0-9_-]+$', max_length=50)
    from_domain: Optional[str] = Field(None, max_length=255, pattern=HOST_PATTERN)
    from_user: Optional[str] = Field(None, max_length=100, pattern=r'^[a-zA-Z0-9+._-]+$')
    qualify_frequency: int = Field(default=60, ge=0, le=3600)
    match_inbound: bool = True
    priority: int = Field(default=1, ge=0, le=1000)
    prefix: str = Field(default="9", pattern=r'^[0-9]+$', max_length=10)
    strip_digits: int = Field(default=1, ge=0, le=10)
    max_channels: int = Field(default=10, ge=1)
    enabled: bool = True
    notes: Optional[str] = None

    @field_validator('codecs')
    @classmethod
    def validate_codecs(cls, v: List[str]) -> List[str]:
        return validate_codec_list(v)


class TrunkCreate(TrunkBase):
    name: str = Field(..., min_length=1, max_length=50, pattern=r'^[a-zA-Z0-9_-]+$')
    secret: Optional[str] = Field(None, max_length=255)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Numeric names belong to extensions"""
        if v.isdigit():
            raise ValueError('Trunk name may not be purely numeric')
        if v.startswith('transport-'):
            raise ValueError('Trunk name may not start with transport-')
        return v


class TrunkUpdate(BaseModel):
    """Partial update; the trunk name cannot change"""
    host: Optional[str] = Field(None, min_length=1, max_length=255, pattern=HOST_PATTERN)
    port: Optional[int] = Field(None, ge=1, le=65535)
    username: Optional[str] = Field(None, max_length=100)
    secret: Optional[str] = Field(None, max_length=255)
    transport: Optional[str] = Field(None, pattern=r'^(udp|tcp|tls)$')
    codecs: Optional[List[str]] = None
    context: Optional[str] = Field(None, pattern=r'^[a-zA-Z0-9_-]+$', max_length=50)
    from_domain: Optional[str] = Field(None, max_length=255, pattern=HOST_PATTERN)
    from_user: Optional[str] = Field(None, max_length=100, pattern=r'^[a-zA-Z0-9+._-]+$')
    qualify_frequency: Optional[int] = Field(None, ge=0, le=3600)
    match_inbound: Optional[bool] = None
    priority: Optional[int] = Field(None, ge=0, le=1000)
    prefix: Optional[str] = Field(None, pattern=r'^[0-9]+$', max_length=10)
    strip_digits: Optional[int] = Field(None, ge=0, le=10)
    max_channels: Optional[int] = Field(None, ge=1)
    enabled: Optional[bool] = None
    notes: Optional[str] = None

    @field_validator('codecs')
    @classmethod
    def validate_codecs(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return validate_codec_list(v)


class TrunkResponse(BaseModel):
    id: int
    name: str
    host: str
    port: int
    username: Optional[str] = None
    transport: str
    codecs: Optional[List[str]] = None
    context: str
    from_domain: Optional[str] = None
    from_user: Optional[str] = None
    qualify_frequency: int
    match_inbound: bool
    priority: int
    prefix: str
    strip_digits: int
    max_channels: int
    enabled: bool
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TrunkListResponse(BaseModel):
    success: bool
    count: int
    trunks: List[TrunkResponse]
