# ============================================================================
# apps/extensions/models.py - Extension database model
# ============================================================================

from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON, Text
from sqlalchemy.sql import func
from shared.database import Base


class Extension(Base):
    __tablename__ = "extensions"

    id = Column(Integer, primary_key=True, index=True)
    extension_number = Column(String(20), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=True)
    secret_hash = Column(String(64), nullable=True)  # pjsip md5_cred
    context = Column(String(50), default="from-internal", nullable=False)
    transport = Column(String(10), default="udp", nullable=False)
    codecs = Column(JSON, nullable=True)  # ordered, first is preferred
    max_contacts = Column(Integer, default=1, nullable=False)
    qualify_frequency = Column(Integer, default=60, nullable=False)
    direct_media = Column(Boolean, default=False, nullable=False)
    enabled = Column(Boolean, default=True, index=True, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def has_secret(self) -> bool:
        return bool(self.secret_hash)
