# ============================================================================
# apps/dialplan/models.py - Dialplan rule database model
# ============================================================================

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text
from sqlalchemy.sql import func
from shared.database import Base


class DialplanRule(Base):
    __tablename__ = "dialplan_rules"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    context = Column(String(50), default="from-internal", index=True, nullable=False)
    pattern = Column(String(100), nullable=False)
    priority = Column(Integer, default=1, nullable=False)
    app = Column(String(50), default="Dial", nullable=False)
    app_data = Column(String(255), default="", nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    rule_type = Column(String(20), default="pattern", nullable=False)
    description = Column(Text, nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
