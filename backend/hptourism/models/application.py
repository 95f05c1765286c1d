"""
Homestay Application Model: the slice of the registration record the
payment core reads and, on a successful payment, updates.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Numeric

from hptourism.database import Base

PAYABLE_STATUSES = ("payment_pending", "verified_for_payment")


class HomestayApplication(Base):
    __tablename__ = "homestay_applications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    application_number = Column(String(50), nullable=False, unique=True, index=True)

    owner_name = Column(String(255), nullable=False)
    district = Column(String(100), nullable=False)
    total_fee = Column(Numeric(10, 2), nullable=True)

    status = Column(String(50), default="draft")
    # Statuses: draft → submitted → ... → payment_pending → approved

    certificate_number = Column(String(50), unique=True)
    certificate_issued_date = Column(DateTime, nullable=True)
    certificate_expiry_date = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_payable(self) -> bool:
        return self.status in PAYABLE_STATUSES
