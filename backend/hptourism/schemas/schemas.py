"""
Pydantic Schemas: request and response models for the HimKosh API.
Field aliases follow the camelCase the portal frontend already consumes.
"""
from datetime import datetime
from typing import Optional, Dict, List
from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ──────────────── Initiate ────────────────

class PaymentInitiateRequest(CamelModel):
    application_id: str = Field(..., alias="applicationId", min_length=1)


class PaymentInitiateResponse(CamelModel):
    success: bool = True
    payment_url: str = Field(..., alias="paymentUrl")
    merchant_code: str = Field(..., alias="merchantCode")
    encdata: str
    checksum: Optional[str] = None   # present only when sent as a separate field
    app_ref_no: str = Field(..., alias="appRefNo")
    total_amount: int = Field(..., alias="totalAmount")
    actual_amount: int = Field(..., alias="actualAmount")
    is_test_mode: bool = Field(..., alias="isTestMode")
    is_configured: bool = Field(..., alias="isConfigured")
    config_status: str = Field(..., alias="configStatus")
    message: str = ""


# ──────────────── Verification ────────────────

class VerificationResponse(BaseModel):
    success: bool = True
    verified: bool
    data: Dict[str, str] = {}


# ──────────────── Transactions ────────────────

class TransactionOut(CamelModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    application_id: str = Field(..., alias="applicationId")
    app_ref_no: str = Field(..., alias="appRefNo")
    dept_ref_no: str = Field(..., alias="deptRefNo")
    total_amount: int = Field(..., alias="totalAmount")
    actual_amount: int = Field(..., alias="actualAmount")
    is_test_mode: bool = Field(False, alias="isTestMode")
    tender_by: str = Field(..., alias="tenderBy")
    merchant_code: Optional[str] = Field(None, alias="merchantCode")
    dept_id: Optional[str] = Field(None, alias="deptId")
    service_code: Optional[str] = Field(None, alias="serviceCode")
    ddo: Optional[str] = None
    head1: Optional[str] = None
    amount1: Optional[int] = None
    head2: Optional[str] = None
    amount2: Optional[int] = None
    period_from: Optional[str] = Field(None, alias="periodFrom")
    period_to: Optional[str] = Field(None, alias="periodTo")
    request_checksum: Optional[str] = Field(None, alias="requestChecksum")
    encrypted_request: Optional[str] = Field(None, alias="encryptedRequest")
    ech_txn_id: Optional[str] = Field(None, alias="echTxnId")
    bank_cin: Optional[str] = Field(None, alias="bankCIN")
    bank_name: Optional[str] = Field(None, alias="bankName")
    payment_date: Optional[str] = Field(None, alias="paymentDate")
    status: Optional[str] = None
    status_cd: Optional[str] = Field(None, alias="statusCd")
    challan_print_url: Optional[str] = Field(None, alias="challanPrintUrl")
    transaction_status: str = Field(..., alias="transactionStatus")
    is_double_verified: bool = Field(False, alias="isDoubleVerified")
    double_verification_date: Optional[datetime] = Field(None, alias="doubleVerificationDate")
    double_verification_data: Optional[Dict] = Field(None, alias="doubleVerificationData")
    initiated_at: Optional[datetime] = Field(None, alias="initiatedAt")
    responded_at: Optional[datetime] = Field(None, alias="respondedAt")
    verified_at: Optional[datetime] = Field(None, alias="verifiedAt")


class TransactionListResponse(BaseModel):
    total: int
    transactions: List[TransactionOut]


# ──────────────── Config ────────────────

class ConfigStatusResponse(CamelModel):
    configured: bool
    config_status: str = Field(..., alias="configStatus")
    missing_fields: List[str] = Field([], alias="missingFields")
    merchant_code: str = Field(..., alias="merchantCode")
    dept_id: str = Field(..., alias="deptId")
    service_code: str = Field(..., alias="serviceCode")
    return_url: str = Field(..., alias="returnUrl")
    key_file_path: str = Field(..., alias="keyFilePath")
    key_file_present: bool = Field(..., alias="keyFilePresent")
    iv_mode: str = Field(..., alias="ivMode")
    checksum_placement: str = Field(..., alias="checksumPlacement")
