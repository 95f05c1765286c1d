"""
System Setting Model: admin-managed key/value flags.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Text

from hptourism.database import Base

PAYMENT_TEST_MODE = "payment_test_mode"   # {"enabled": bool}


class SystemSetting(Base):
    __tablename__ = "system_settings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    setting_key = Column(String(100), nullable=False, unique=True, index=True)
    setting_value = Column(JSON, nullable=False, default=dict)
    description = Column(Text)
    category = Column(String(50), default="general")  # payment | general | notification

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
