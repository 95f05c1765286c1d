"""
DDO Code Model: district → treasury Drawing & Disbursing Officer code.
Administered outside the payment core; read-only here.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean, Text

from hptourism.database import Base


class DDOCode(Base):
    __tablename__ = "ddo_codes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    district = Column(String(100), nullable=False, unique=True, index=True)
    ddo_code = Column(String(20), nullable=False)         # e.g. KLU00-123
    ddo_description = Column(Text, default="")
    treasury_code = Column(String(10), default="")        # e.g. CHM00, KLU00, SML00
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
