# ============================================================================
# apps/trunks/models.py - Trunk database model
# ============================================================================

from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON, Text
from sqlalchemy.sql import func
from shared.database import Base


class Trunk(Base):
    __tablename__ = "trunks"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, index=True, nullable=False)
    host = Column(String(255), nullable=False)
    port = Column(Integer, default=5060, nullable=False)
    username = Column(String(100), nullable=True)
    secret = Column(String(255), nullable=True)
    transport = Column(String(10), default="udp", nullable=False)
    codecs = Column(JSON, nullable=True)
    context = Column(String(50), default="from-trunk", nullable=False)
    from_domain = Column(String(255), nullable=True)
    from_user = Column(String(100), nullable=True)
    qualify_frequency = Column(Integer, default=60, nullable=False)
    match_inbound = Column(Boolean, default=True, nullable=False)
    priority = Column(Integer, default=1, index=True, nullable=False)
    prefix = Column(String(10), default="9", nullable=False)
    strip_digits = Column(Integer, default=1, nullable=False)
    max_channels = Column(Integer, default=10, nullable=False)
    enabled = Column(Boolean, default=True, index=True, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
