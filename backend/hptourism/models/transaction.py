"""
HimKosh Transaction Model: append-only record of one treasury payment attempt.
The encrypted request is what was actually sent and is never rewritten.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, Boolean, JSON, Text, ForeignKey

from hptourism.database import Base


class HimKoshTransaction(Base):
    __tablename__ = "himkosh_transactions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    application_id = Column(String(36), ForeignKey("homestay_applications.id"), nullable=False, index=True)

    dept_ref_no = Column(String(45), nullable=False)                       # application number
    app_ref_no = Column(String(20), nullable=False, unique=True, index=True)  # our correlation id

    # Amounts in whole rupees
    total_amount = Column(Integer, nullable=False)   # sent to the gateway
    actual_amount = Column(Integer, nullable=False)  # calculated fee
    is_test_mode = Column(Boolean, default=False)
    tender_by = Column(String(70), nullable=False)

    # Routing
    merchant_code = Column(String(15))
    dept_id = Column(String(10))
    service_code = Column(String(5))
    ddo = Column(String(12))

    # Heads of account
    head1 = Column(String(14))
    amount1 = Column(Integer)
    head2 = Column(String(14))
    amount2 = Column(Integer)
    head3 = Column(String(14))
    amount3 = Column(Integer)
    head4 = Column(String(14))
    amount4 = Column(Integer)
    head10 = Column(String(50))   # IFSC-AccountNo for non-govt charges
    amount10 = Column(Integer)

    period_from = Column(String(10))   # DD-MM-YYYY
    period_to = Column(String(10))

    # Outbound payload, kept for audit and dispute resolution
    request_string = Column(Text)
    request_checksum = Column(String(32))
    encrypted_request = Column(Text)

    # Callback from CTP
    ech_txn_id = Column(String(20), unique=True)   # HIMGRN
    bank_cin = Column(String(20))
    bank = Column(String(10))
    bank_name = Column(String(50))
    payment_date = Column(String(14))              # DDMMYYYYHHMMSS
    status = Column(String(70))                    # bank's status text
    status_cd = Column(String(1))                  # 1 = success, 0 = failure
    response_checksum = Column(String(32))
    challan_print_url = Column(Text)

    # Double verification
    is_double_verified = Column(Boolean, default=False)
    double_verification_date = Column(DateTime, nullable=True)
    double_verification_data = Column(JSON, nullable=True)

    transaction_status = Column(String(20), default="initiated", index=True)  # initiated | success | failed

    initiated_at = Column(DateTime, default=datetime.utcnow)
    responded_at = Column(DateTime, nullable=True)
    verified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
