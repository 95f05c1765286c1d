"""
HimKosh Payment Service: lifecycle of one treasury payment attempt.

initiate  → build, checksum and encrypt the challan request, persist it.
callback  → decrypt, verify, settle the transaction, issue the certificate.
verify    → server-to-server double verification for reconciliation.
"""
import calendar
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlencode

import structlog
from sqlalchemy.orm import Session

from hptourism.config import HimKoshConfig, Settings, get_settings
from hptourism.himkosh.codec import (
    PaymentRequest,
    build_request_string,
    build_verification_string,
    parse_response_string,
    split_checksum,
    to_whole_rupees,
    with_checksum,
)
from hptourism.himkosh.crypto import ChecksumPlacement, HimKoshCipher, generate_checksum, require_valid_checksum
from hptourism.himkosh.exceptions import (
    ApplicationNotFoundError,
    ApplicationNotPayableError,
    ChecksumMismatchError,
    FeeNotCalculatedError,
    HimKoshConfigError,
    TransactionNotFoundError,
)
from hptourism.himkosh.gateway import HimKoshGateway
from hptourism.models.application import HomestayApplication
from hptourism.models.ddo_code import DDOCode
from hptourism.models.system_setting import PAYMENT_TEST_MODE, SystemSetting
from hptourism.models.transaction import HimKoshTransaction
from hptourism.utils.validators import sanitize_tender_by, sanitize_wire_value

logger = structlog.get_logger(__name__)

APP_REF_PREFIX = "HPT"
APP_REF_MAX_LEN = 20
PERIOD_FORMAT = "%d-%m-%Y"
CERTIFICATE_PREFIX = "HP-HST"

_REF_ALPHABET = string.ascii_uppercase + string.digits


def generate_app_ref_no(now_ms: Optional[int] = None) -> str:
    """``HPT`` + epoch milliseconds + random suffix, exactly 20 characters.

    The suffix always fills whatever the timestamp leaves, so truncation to
    the gateway's field length never eats into the random part.
    """
    stamp = f"{APP_REF_PREFIX}{now_ms if now_ms is not None else int(time.time() * 1000)}"
    stamp = stamp[:APP_REF_MAX_LEN - 4]
    suffix = "".join(secrets.choice(_REF_ALPHABET) for _ in range(APP_REF_MAX_LEN - len(stamp)))
    return stamp + suffix


def accounting_period(today: Optional[date] = None) -> Tuple[str, str]:
    """First and last day of the current month in the gateway's date format."""
    today = today or date.today()
    last_day = calendar.monthrange(today.year, today.month)[1]
    first = today.replace(day=1)
    last = today.replace(day=last_day)
    return first.strftime(PERIOD_FORMAT), last.strftime(PERIOD_FORMAT)


def generate_certificate_number(year: Optional[int] = None) -> str:
    """Format: HP-HST-<year>-<5 digits>."""
    year = year or datetime.utcnow().year
    return f"{CERTIFICATE_PREFIX}-{year}-{10000 + secrets.randbelow(90000)}"


def _add_years(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:  # 29 Feb
        return moment.replace(year=moment.year + years, day=28)


@dataclass
class InitiationResult:
    payment_url: str
    merchant_code: str
    encdata: str
    app_ref_no: str
    total_amount: int
    actual_amount: int
    is_test_mode: bool
    is_configured: bool
    config_status: str
    checksum: Optional[str] = None  # only in separate-checksum mode

    @property
    def message(self) -> str:
        if self.is_test_mode:
            return f"Test mode active: gateway receives ₹{self.total_amount} (actual fee ₹{self.actual_amount})"
        if not self.is_configured:
            return "Using placeholder configuration - waiting for CTP credentials"
        return "Payment initiated successfully"


@dataclass
class CallbackOutcome:
    application_id: str
    app_ref_no: str
    success: bool
    ech_txn_id: str
    duplicate: bool = False

    def redirect_path(self) -> str:
        outcome = "success" if self.success else "failed"
        query = urlencode({"payment": outcome, "himgrn": self.ech_txn_id or ""})
        return f"/application/{self.application_id}?{query}"


@dataclass
class VerificationResult:
    verified: bool
    data: Dict[str, str] = field(default_factory=dict)


class HimKoshPaymentService:
    """Orchestrates codec, cipher and gateway against the database.

    The cipher (and the key handle inside it) and the gateway client are
    process-wide and injected; a service instance lives for one request.
    """

    def __init__(
        self,
        db: Session,
        config: HimKoshConfig,
        cipher: HimKoshCipher,
        gateway: Optional[HimKoshGateway] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.config = config
        self.cipher = cipher
        self.gateway = gateway
        self.settings = settings or get_settings()

    # ─── Lookups ─────────────────────────────────────────────────────

    def resolve_ddo(self, district: Optional[str]) -> str:
        """District-specific DDO code, or the configured default."""
        if district:
            mapping = (
                self.db.query(DDOCode)
                .filter(DDOCode.district == district, DDOCode.is_active.is_(True))
                .first()
            )
            if mapping:
                logger.info("himkosh_ddo_resolved", district=district, ddo=mapping.ddo_code)
                return mapping.ddo_code
        logger.warning("himkosh_ddo_fallback", district=district, ddo=self.config.ddo)
        return self.config.ddo

    def is_test_mode(self) -> bool:
        if self.config.test_mode:
            return True
        setting = (
            self.db.query(SystemSetting)
            .filter(SystemSetting.setting_key == PAYMENT_TEST_MODE)
            .first()
        )
        value = setting.setting_value if setting else None
        return bool(isinstance(value, dict) and value.get("enabled"))

    def _new_app_ref_no(self) -> str:
        for _ in range(5):
            candidate = generate_app_ref_no()
            taken = (
                self.db.query(HimKoshTransaction.id)
                .filter(HimKoshTransaction.app_ref_no == candidate)
                .first()
            )
            if not taken:
                return candidate
        raise RuntimeError("Could not allocate a unique AppRefNo")

    def _get_transaction(self, app_ref_no: str) -> HimKoshTransaction:
        txn = (
            self.db.query(HimKoshTransaction)
            .filter(HimKoshTransaction.app_ref_no == app_ref_no)
            .first()
        )
        if not txn:
            raise TransactionNotFoundError(app_ref_no)
        return txn

    # ─── Initiate ────────────────────────────────────────────────────

    def initiate(self, application_id: str) -> InitiationResult:
        """Create and persist an encrypted challan request for an application."""
        application = (
            self.db.query(HomestayApplication)
            .filter(HomestayApplication.id == application_id)
            .first()
        )
        if not application:
            raise ApplicationNotFoundError("Application not found")
        if not application.is_payable:
            raise ApplicationNotPayableError(
                "Application is not ready for payment", current_status=application.status or ""
            )
        if application.total_fee is None:
            raise FeeNotCalculatedError("Total fee not calculated for this application")

        fee = to_whole_rupees(application.total_fee)
        if fee <= 0:
            raise FeeNotCalculatedError("Total fee must be a positive amount")

        config = self.config
        ddo = self.resolve_ddo(application.district)
        app_ref_no = self._new_app_ref_no()

        test_mode = self.is_test_mode()
        head2 = config.head2 or config.head1
        head2_amount = max(config.head2_amount, 0) if config.head2 else 0
        actual_amount = fee + head2_amount
        amount1 = config.test_amount if test_mode else fee
        amount2 = 0 if test_mode else head2_amount
        gateway_amount = amount1 + amount2
        if test_mode:
            logger.warning(
                "himkosh_test_mode", app_ref_no=app_ref_no,
                gateway_amount=gateway_amount, actual_amount=actual_amount,
            )

        period_from, period_to = accounting_period()
        request = PaymentRequest(
            dept_id=config.dept_id,
            dept_ref_no=sanitize_wire_value(application.application_number),
            total_amount=gateway_amount,
            tender_by=sanitize_tender_by(application.owner_name),
            app_ref_no=app_ref_no,
            head1=config.head1,
            amount1=amount1,
            head2=head2,
            amount2=amount2,
            ddo=ddo,
            period_from=period_from,
            period_to=period_to,
            service_code=config.service_code,
            return_url=config.return_url,
        )
        strings = build_request_string(request)
        checksum = generate_checksum(strings.core)
        request_string = with_checksum(strings.full, checksum)
        encdata = self.cipher.encrypt(request_string)

        txn = HimKoshTransaction(
            application_id=application.id,
            dept_ref_no=request.dept_ref_no,
            app_ref_no=app_ref_no,
            total_amount=gateway_amount,
            actual_amount=actual_amount,
            is_test_mode=test_mode,
            tender_by=request.tender_by,
            merchant_code=config.merchant_code,
            dept_id=config.dept_id,
            service_code=config.service_code,
            ddo=ddo,
            head1=config.head1,
            amount1=amount1,
            head2=head2,
            amount2=amount2,
            period_from=period_from,
            period_to=period_to,
            request_string=request_string,
            request_checksum=checksum,
            encrypted_request=encdata,
            transaction_status="initiated",
        )
        self.db.add(txn)
        self.db.commit()

        logger.info(
            "himkosh_payment_initiated",
            application_id=application.id, app_ref_no=app_ref_no,
            ddo=ddo, total_amount=gateway_amount, config_status=config.config_status,
        )

        return InitiationResult(
            payment_url=config.payment_url,
            merchant_code=config.merchant_code,
            encdata=encdata,
            app_ref_no=app_ref_no,
            total_amount=gateway_amount,
            actual_amount=actual_amount,
            is_test_mode=test_mode,
            is_configured=config.is_configured,
            config_status=config.config_status,
            checksum=checksum if config.checksum_placement is ChecksumPlacement.SEPARATE else None,
        )

    # ─── Callback ────────────────────────────────────────────────────

    def handle_callback(self, encdata: str) -> CallbackOutcome:
        """Settle a transaction from the treasury's encrypted callback.

        Raises before any write when the payload cannot be decrypted, the
        checksum does not match, or the AppRefNo is unknown.
        """
        decrypted = self.cipher.decrypt(encdata)
        body, presented = split_checksum(decrypted)
        response = parse_response_string(decrypted)

        try:
            require_valid_checksum(body, presented)
        except ChecksumMismatchError:
            logger.error(
                "himkosh_callback_checksum_mismatch",
                app_ref_no=response.app_ref_no, presented=presented,
            )
            raise

        try:
            txn = self._get_transaction(response.app_ref_no)
        except TransactionNotFoundError:
            logger.error("himkosh_callback_unknown_transaction", app_ref_no=response.app_ref_no)
            raise

        now = datetime.utcnow()
        success = response.is_success
        values = {
            HimKoshTransaction.ech_txn_id: response.ech_txn_id or None,
            HimKoshTransaction.bank_cin: response.bank_cin,
            HimKoshTransaction.bank: response.bank,
            HimKoshTransaction.bank_name: response.bank_name,
            HimKoshTransaction.payment_date: response.payment_date,
            HimKoshTransaction.status: response.status,
            HimKoshTransaction.status_cd: response.status_cd,
            HimKoshTransaction.response_checksum: presented,
            HimKoshTransaction.transaction_status: "success" if success else "failed",
            HimKoshTransaction.responded_at: now,
            HimKoshTransaction.updated_at: now,
        }
        if success and response.ech_txn_id:
            values[HimKoshTransaction.challan_print_url] = (
                f"{self.config.challan_print_url}?"
                + urlencode({"reportName": "PaidChallan", "TransId": response.ech_txn_id})
            )

        # settled rows are never reopened, so the guard makes this a no-op
        # for a repeated callback
        updated = (
            self.db.query(HimKoshTransaction)
            .filter(
                HimKoshTransaction.id == txn.id,
                HimKoshTransaction.transaction_status == "initiated",
            )
            .update(values, synchronize_session=False)
        )

        if not updated:
            self.db.rollback()
            self.db.refresh(txn)
            logger.warning(
                "himkosh_callback_already_settled",
                app_ref_no=txn.app_ref_no, transaction_status=txn.transaction_status,
            )
            return CallbackOutcome(
                application_id=txn.application_id,
                app_ref_no=txn.app_ref_no,
                success=txn.transaction_status == "success",
                ech_txn_id=txn.ech_txn_id or response.ech_txn_id,
                duplicate=True,
            )

        if success:
            self._issue_certificate(txn.application_id, now)

        self.db.commit()
        logger.info(
            "himkosh_callback_processed",
            app_ref_no=txn.app_ref_no, ech_txn_id=response.ech_txn_id,
            status_cd=response.status_cd, success=success,
        )
        return CallbackOutcome(
            application_id=txn.application_id,
            app_ref_no=txn.app_ref_no,
            success=success,
            ech_txn_id=response.ech_txn_id,
        )

    def _issue_certificate(self, application_id: str, issued_at: datetime) -> Optional[str]:
        """Approve the application and mint its certificate, once.

        An application can hold several initiated transactions; a later
        successful callback leaves an already issued certificate alone.
        """
        certificate_number = generate_certificate_number(issued_at.year)
        while (
            self.db.query(HomestayApplication.id)
            .filter(HomestayApplication.certificate_number == certificate_number)
            .first()
        ):
            certificate_number = generate_certificate_number(issued_at.year)

        issued = self.db.query(HomestayApplication).filter(
            HomestayApplication.id == application_id,
            HomestayApplication.certificate_number.is_(None),
        ).update(
            {
                HomestayApplication.status: "approved",
                HomestayApplication.certificate_number: certificate_number,
                HomestayApplication.certificate_issued_date: issued_at,
                HomestayApplication.certificate_expiry_date: _add_years(
                    issued_at, self.settings.CERTIFICATE_VALIDITY_YEARS
                ),
                HomestayApplication.approved_at: issued_at,
                HomestayApplication.updated_at: issued_at,
            },
            synchronize_session=False,
        )
        if not issued:
            logger.warning("certificate_already_issued", application_id=application_id)
            return None
        logger.info("certificate_issued", application_id=application_id, certificate_number=certificate_number)
        return certificate_number

    # ─── Double verification ─────────────────────────────────────────

    def verify(self, app_ref_no: str) -> VerificationResult:
        """Ask the treasury directly for the status of a transaction.

        Only annotates the row; the callback outcome is never overwritten.
        """
        if self.gateway is None:
            raise HimKoshConfigError("HimKosh verification gateway is not configured")

        txn = self._get_transaction(app_ref_no)
        service_code = txn.service_code or self.config.service_code
        merchant_code = txn.merchant_code or self.config.merchant_code

        verification = build_verification_string(app_ref_no, service_code, merchant_code)
        encdata = self.cipher.encrypt(with_checksum(verification, generate_checksum(verification)))
        data = self.gateway.verify(encdata, merchant_code)

        now = datetime.utcnow()
        self.db.query(HimKoshTransaction).filter(HimKoshTransaction.id == txn.id).update(
            {
                HimKoshTransaction.is_double_verified: True,
                HimKoshTransaction.double_verification_date: now,
                HimKoshTransaction.double_verification_data: data,
                HimKoshTransaction.verified_at: now,
                HimKoshTransaction.updated_at: now,
            },
            synchronize_session=False,
        )
        self.db.commit()

        verified = data.get("TXN_STAT") == "1"
        logger.info("himkosh_double_verified", app_ref_no=app_ref_no, verified=verified)
        return VerificationResult(verified=verified, data=data)

    # ─── Read paths ──────────────────────────────────────────────────

    def list_transactions(
        self, status: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> Tuple[int, List[HimKoshTransaction]]:
        query = self.db.query(HimKoshTransaction).order_by(HimKoshTransaction.created_at.desc())
        if status:
            query = query.filter(HimKoshTransaction.transaction_status == status)
        total = query.count()
        return total, query.offset(offset).limit(limit).all()

    def get_transaction(self, app_ref_no: str) -> HimKoshTransaction:
        return self._get_transaction(app_ref_no)

    def config_status(self) -> dict:
        config = self.config
        key_file = self.cipher.key_file
        return {
            "configured": config.is_configured,
            "configStatus": config.config_status,
            "missingFields": list(config.missing_fields),
            "merchantCode": config.merchant_code,
            "deptId": config.dept_id,
            "serviceCode": config.service_code,
            "returnUrl": config.return_url,
            "keyFilePath": key_file.path,
            "keyFilePresent": key_file.exists(),
            "ivMode": key_file.iv_mode.value,
            "checksumPlacement": config.checksum_placement.value,
        }
