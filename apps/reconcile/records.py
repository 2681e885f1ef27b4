# ============================================================================
# apps/reconcile/records.py - Normalized records shared by generator, parser and diff
# ============================================================================

import hashlib
import os
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

DEFAULTS_PATH = os.path.join(os.path.dirname(__file__), "pjsip_defaults.yaml")

with open(DEFAULTS_PATH, "r") as f:
    PJSIP_DEFAULTS = yaml.safe_load(f)

EXTENSION_DEFAULTS = PJSIP_DEFAULTS["extension"]["defaults"]
TRUNK_DEFAULTS = PJSIP_DEFAULTS["trunk"]["defaults"]
TRANSPORTS = ("udp", "tcp", "tls")


def md5_credential(username: str, realm: str, secret: str) -> str:
    """pjsip md5_cred value: md5 of `username:realm:secret`"""
    return hashlib.md5(f"{username}:{realm}:{secret}".encode("utf-8")).hexdigest()


class ExtensionRecord(BaseModel):
    """SIP endpoint as both the database and pjsip.conf can express it"""
    number: str
    name: Optional[str] = None
    md5_cred: Optional[str] = None
    context: str = EXTENSION_DEFAULTS["context"]
    transport: str = EXTENSION_DEFAULTS["transport"]
    codecs: List[str] = Field(default_factory=lambda: list(EXTENSION_DEFAULTS["codecs"]))
    max_contacts: int = EXTENSION_DEFAULTS["max_contacts"]
    qualify_frequency: int = EXTENSION_DEFAULTS["qualify_frequency"]
    direct_media: bool = EXTENSION_DEFAULTS["direct_media"]
    enabled: bool = True

    class Config:
        from_attributes = True

    @property
    def identity(self) -> str:
        return self.number


class TrunkRecord(BaseModel):
    """Upstream SIP peer"""
    name: str
    host: str = ""
    port: int = TRUNK_DEFAULTS["port"]
    username: Optional[str] = None
    secret: Optional[str] = None
    transport: str = TRUNK_DEFAULTS["transport"]
    codecs: List[str] = Field(default_factory=lambda: list(TRUNK_DEFAULTS["codecs"]))
    context: str = TRUNK_DEFAULTS["context"]
    from_domain: Optional[str] = None
    from_user: Optional[str] = None
    qualify_frequency: int = TRUNK_DEFAULTS["qualify_frequency"]
    match_inbound: bool = True
    priority: int = TRUNK_DEFAULTS["priority"]
    prefix: str = TRUNK_DEFAULTS["prefix"]
    strip_digits: int = TRUNK_DEFAULTS["strip_digits"]
    max_channels: int = TRUNK_DEFAULTS["max_channels"]
    enabled: bool = True

    class Config:
        from_attributes = True

    @property
    def identity(self) -> str:
        return self.name


class DialplanRuleRecord(BaseModel):
    name: str
    context: str = "from-internal"
    pattern: str
    priority: int = 1
    app: str = "Dial"
    app_data: str = ""
    enabled: bool = True
    rule_type: str = "pattern"
    description: Optional[str] = None
    sort_order: int = 0

    class Config:
        from_attributes = True


class SyncStatus(str, Enum):
    MATCH = "match"
    DATABASE_ONLY = "database-only"
    EXTERNAL_ONLY = "external-only"
    MISMATCH = "mismatch"


class FieldDifference(BaseModel):
    field: str
    database: Any = None
    external: Any = None

    def describe(self) -> str:
        return f"{self.field}: db={self.database}, external={self.external}"


class SyncRecord(BaseModel):
    """One identity's pairing for a single reconciliation pass"""
    identity: str
    status: SyncStatus
    database: Optional[Dict[str, Any]] = None
    external: Optional[Dict[str, Any]] = None
    differences: List[FieldDifference] = Field(default_factory=list)
    registered: Optional[bool] = None

    def describe_differences(self) -> List[str]:
        return [difference.describe() for difference in self.differences]
