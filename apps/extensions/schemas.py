# ============================================================================
# apps/extensions/schemas.py - Extension request/response models
# ============================================================================

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from datetime import datetime

ALLOWED_CODECS = ['ulaw', 'alaw', 'g722', 'g729', 'gsm', 'opus', 'ilbc', 'speex', 'h264', 'vp8', 'vp9']


def validate_codec_list(codecs: Optional[List[str]]) -> Optional[List[str]]:
    """Validate codec list, keeping the priority order"""
    if codecs is None:
        return codecs
    if not codecs:
        raise ValueError('At least one codec is required')
    seen = []
    for codec in codecs:
        codec = codec.strip().lower()
        if codec not in ALLOWED_CODECS:
            raise ValueError(f'Invalid codec: {codec}')
        if codec in seen:
            raise ValueError(f'Duplicate codec: {codec}')
        seen.append(codec)
    return seen


def validate_display_name(name: Optional[str]) -> Optional[str]:
    """Caller ID names are written inside quotes and read back trimmed"""
    if name is None:
        return name
    if any(c in name for c in ('"', '\n', '\r')):
        raise ValueError('Name may not contain quotes or line breaks')
    name = name.strip()
    if not name:
        raise ValueError('Name may not be blank')
    return name


class ExtensionBase(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    context: str = Field(default="from-internal", pattern=r'^[a-zA-Z0-9_-]+$', max_length=50)
    transport: str = Field(default="udp", pattern=r'^(udp|tcp|tls)$')
    codecs: List[str] = Field(default_factory=lambda: ["ulaw", "alaw", "g722"])
    max_contacts: int = Field(default=1, ge=1, le=100)
    qualify_frequency: int = Field(default=60, ge=0, le=3600)
    direct_media: bool = False
    enabled: bool = True
    notes: Optional[str] = None

    @field_validator('codecs')
    @classmethod
    def validate_codecs(cls, v: List[str]) -> List[str]:
        return validate_codec_list(v)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return validate_display_name(v)


class ExtensionCreate(ExtensionBase):
    extension_number: str = Field(..., pattern=r'^[0-9]{2,20}$')
    secret: str = Field(..., min_length=8, max_length=128)


class ExtensionUpdate(BaseModel):
    """Partial update; the extension number cannot change"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    secret: Optional[str] = Field(None, min_length=8, max_length=128)
    context: Optional[str] = Field(None, pattern=r'^[a-zA-Z0-9_-]+$', max_length=50)
    transport: Optional[str] = Field(None, pattern=r'^(udp|tcp|tls)$')
    codecs: Optional[List[str]] = None
    max_contacts: Optional[int] = Field(None, ge=1, le=100)
    qualify_frequency: Optional[int] = Field(None, ge=0, le=3600)
    direct_media: Optional[bool] = None
    enabled: Optional[bool] = None
    notes: Optional[str] = None

    @field_validator('codecs')
    @classmethod
    def validate_codecs(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return validate_codec_list(v)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return validate_display_name(v)


class ExtensionResponse(BaseModel):
    id: int
    extension_number: str
    name: Optional[str] = None
    context: str
    transport: str
    codecs: Optional[List[str]] = None
    max_contacts: int
    qualify_frequency: int
    direct_media: bool
    enabled: bool
    has_secret: bool = False
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExtensionListResponse(BaseModel):
    success: bool
    count: int
    extensions: List[ExtensionResponse]
