"""Tests for the HimKosh payment orchestrator."""

from __future__ import annotations

import re
from dataclasses import replace
from datetime import date
from decimal import Decimal

import httpx
import pytest

from hptourism.himkosh.codec import parse_pipe_string
from hptourism.himkosh.crypto import ChecksumPlacement, generate_checksum
from hptourism.himkosh.exceptions import (
    ApplicationNotFoundError,
    ApplicationNotPayableError,
    ChecksumMismatchError,
    FeeNotCalculatedError,
    GatewayUnavailableError,
    HimKoshCryptoError,
    TransactionNotFoundError,
)
from hptourism.himkosh.service import (
    CallbackOutcome,
    HimKoshPaymentService,
    accounting_period,
    generate_app_ref_no,
    generate_certificate_number,
)
from hptourism.models import HimKoshTransaction, HomestayApplication, SystemSetting
from hptourism.models.system_setting import PAYMENT_TEST_MODE

CERTIFICATE_RE = re.compile(r"^HP-HST-\d{4}-\d{5}$")


def _transaction(db, app_ref_no: str) -> HimKoshTransaction:
    db.expire_all()
    return db.query(HimKoshTransaction).filter(HimKoshTransaction.app_ref_no == app_ref_no).one()


class TestHelpers:
    def test_app_ref_no_is_twenty_chars_with_random_suffix(self) -> None:
        refs = [generate_app_ref_no(1760695200000) for _ in range(50)]
        # same millisecond, so only the suffix separates them
        assert len(set(refs)) > 45
        for ref in refs:
            assert len(ref) == 20
            assert ref.startswith("HPT1760695200000")

    def test_app_ref_no_keeps_random_suffix_with_long_timestamp(self) -> None:
        ref = generate_app_ref_no(10 ** 20)
        assert len(ref) == 20
        assert ref[-4:].isalnum()

    def test_accounting_period_covers_month(self) -> None:
        assert accounting_period(date(2024, 2, 10)) == ("01-02-2024", "29-02-2024")
        assert accounting_period(date(2026, 10, 17)) == ("01-10-2026", "31-10-2026")

    def test_certificate_number_format(self) -> None:
        assert CERTIFICATE_RE.match(generate_certificate_number(2026))


class TestInitiate:
    def test_happy_path_persists_initiated_transaction(self, service, db, make_application, kullu_ddo) -> None:
        application = make_application()
        result = service.initiate(application.id)

        txn = _transaction(db, result.app_ref_no)
        assert txn.ddo == "KLU00-123"
        assert txn.total_amount == 6000
        assert txn.actual_amount == 6000
        assert txn.transaction_status == "initiated"
        assert txn.encrypted_request == result.encdata
        assert result.total_amount == result.actual_amount == 6000
        assert not result.is_test_mode

    def test_encrypted_payload_embeds_checksum_of_core(self, service, db, cipher, make_application) -> None:
        result = service.initiate(make_application().id)
        txn = _transaction(db, result.app_ref_no)

        decrypted = cipher.decrypt(result.encdata)
        assert decrypted == txn.request_string
        body, checksum = decrypted.rsplit("|checkSum=", 1)
        core = body.split("|Service_code=")[0]
        assert checksum == generate_checksum(core) == txn.request_checksum
        assert body.endswith("|Service_code=TSM|return_url=https://portal.test/api/himkosh/callback")
        assert result.checksum is None

    def test_separate_checksum_mode_exposes_checksum(
        self, db, himkosh_config, cipher, gateway, app_settings, make_application
    ) -> None:
        config = replace(himkosh_config, checksum_placement=ChecksumPlacement.SEPARATE)
        service = HimKoshPaymentService(db, config, cipher, gateway, settings=app_settings)
        result = service.initiate(make_application().id)
        assert result.checksum == _transaction(db, result.app_ref_no).request_checksum

    def test_unmapped_district_uses_default_ddo(self, service, db, make_application, kullu_ddo) -> None:
        result = service.initiate(make_application(district="Lahaul and Spiti").id)
        assert _transaction(db, result.app_ref_no).ddo == "SML00-532"

    def test_test_mode_sends_nominal_amount(self, service, db, make_application) -> None:
        db.add(SystemSetting(setting_key=PAYMENT_TEST_MODE, setting_value={"enabled": True}, category="payment"))
        db.commit()

        result = service.initiate(make_application(total_fee=Decimal("8000")).id)
        assert result.is_test_mode
        assert result.total_amount == 1
        assert result.actual_amount == 8000

        txn = _transaction(db, result.app_ref_no)
        assert txn.total_amount == 1
        assert txn.amount1 == 1
        assert txn.actual_amount == 8000
        assert "TotalAmount=1|" in txn.request_string

    def test_fractional_fee_is_rounded(self, service, db, make_application) -> None:
        result = service.initiate(make_application(total_fee=Decimal("1500.75")).id)
        fields = parse_pipe_string(_transaction(db, result.app_ref_no).request_string)
        assert fields["TotalAmount"] == "1501"
        assert fields["Amount1"] == "1501"

    def test_head2_sent_with_zero_amount_by_default(self, service, db, make_application) -> None:
        result = service.initiate(make_application().id)
        txn = _transaction(db, result.app_ref_no)

        assert "|Amount1=6000|Head2=1452-00-800-01|Amount2=0|Ddo=" in txn.request_string
        assert txn.head2 == "1452-00-800-01"
        assert txn.amount2 == 0

    def test_secondary_head_is_added(self, db, himkosh_config, cipher, gateway, app_settings, make_application) -> None:
        config = replace(himkosh_config, head2="0230-00-104-02", head2_amount=500)
        service = HimKoshPaymentService(db, config, cipher, gateway, settings=app_settings)
        result = service.initiate(make_application().id)

        fields = parse_pipe_string(_transaction(db, result.app_ref_no).request_string)
        assert fields["Head2"] == "0230-00-104-02"
        assert fields["Amount2"] == "500"
        assert fields["TotalAmount"] == "6500"
        assert result.total_amount == result.actual_amount == 6500
        assert _transaction(db, result.app_ref_no).actual_amount == 6500

    def test_pipe_in_owner_name_is_sanitised(self, service, db, make_application) -> None:
        result = service.initiate(make_application(owner_name="Ramesh | Thakur").id)
        assert _transaction(db, result.app_ref_no).tender_by == "Ramesh Thakur"

    def test_unknown_application(self, service) -> None:
        with pytest.raises(ApplicationNotFoundError):
            service.initiate("does-not-exist")

    def test_application_not_payable(self, service, db, make_application) -> None:
        application = make_application(status="submitted")
        with pytest.raises(ApplicationNotPayableError) as excinfo:
            service.initiate(application.id)
        assert excinfo.value.current_status == "submitted"
        assert db.query(HimKoshTransaction).count() == 0

    def test_fee_not_calculated(self, service, make_application) -> None:
        with pytest.raises(FeeNotCalculatedError):
            service.initiate(make_application(total_fee=None).id)


class TestCallback:
    def test_success_settles_and_issues_certificate(
        self, service, db, make_application, kullu_ddo, callback_payload
    ) -> None:
        application = make_application()
        result = service.initiate(application.id)

        outcome = service.handle_callback(callback_payload(result.app_ref_no, ech_txn_id="HIM0012345"))
        assert outcome.success
        assert outcome.redirect_path() == f"/application/{application.id}?payment=success&himgrn=HIM0012345"

        txn = _transaction(db, result.app_ref_no)
        assert txn.transaction_status == "success"
        assert txn.ech_txn_id == "HIM0012345"
        assert txn.bank_cin == "CIN20261017001"
        assert txn.status_cd == "1"
        assert txn.responded_at is not None
        assert txn.challan_print_url.endswith("TransId=HIM0012345")

        db.refresh(application)
        assert application.status == "approved"
        assert CERTIFICATE_RE.match(application.certificate_number)
        assert application.certificate_expiry_date.year == application.certificate_issued_date.year + 1

    def test_failure_marks_failed_without_certificate(self, service, db, make_application, callback_payload) -> None:
        application = make_application()
        result = service.initiate(application.id)

        outcome = service.handle_callback(callback_payload(result.app_ref_no, status_cd="0", ech_txn_id=""))
        assert not outcome.success
        assert _transaction(db, result.app_ref_no).transaction_status == "failed"

        db.refresh(application)
        assert application.status == "payment_pending"
        assert application.certificate_number is None

    def test_checksum_tamper_changes_nothing(self, service, db, make_application, callback_payload) -> None:
        application = make_application()
        result = service.initiate(application.id)

        with pytest.raises(ChecksumMismatchError):
            service.handle_callback(callback_payload(result.app_ref_no, checksum="0" * 32))

        assert _transaction(db, result.app_ref_no).transaction_status == "initiated"
        db.refresh(application)
        assert application.status == "payment_pending"

    def test_unknown_reference(self, service, db, callback_payload) -> None:
        with pytest.raises(TransactionNotFoundError):
            service.handle_callback(callback_payload("HPT0000000000000ZZZZ"))
        assert db.query(HimKoshTransaction).count() == 0

    def test_undecryptable_payload(self, service) -> None:
        with pytest.raises(HimKoshCryptoError):
            service.handle_callback("bm90LWVuY3J5cHRlZA==")

    def test_settled_transaction_is_not_reopened(self, service, db, make_application, callback_payload) -> None:
        result = service.initiate(make_application().id)
        service.handle_callback(callback_payload(result.app_ref_no, status_cd="1", ech_txn_id="HIM0000001"))

        repeat = service.handle_callback(callback_payload(result.app_ref_no, status_cd="0", ech_txn_id="HIM0000002"))
        assert repeat.duplicate
        assert repeat.success

        txn = _transaction(db, result.app_ref_no)
        assert txn.transaction_status == "success"
        assert txn.ech_txn_id == "HIM0000001"

    def test_second_paid_transaction_keeps_issued_certificate(
        self, service, db, make_application, callback_payload
    ) -> None:
        application = make_application()
        first = service.initiate(application.id)
        second = service.initiate(application.id)

        service.handle_callback(callback_payload(first.app_ref_no, ech_txn_id="HIM0000001"))
        db.refresh(application)
        certificate = application.certificate_number
        issued_at = application.certificate_issued_date

        outcome = service.handle_callback(callback_payload(second.app_ref_no, ech_txn_id="HIM0000002"))
        assert outcome.success
        assert not outcome.duplicate
        assert _transaction(db, second.app_ref_no).transaction_status == "success"

        db.refresh(application)
        assert application.certificate_number == certificate
        assert application.certificate_issued_date == issued_at

    def test_redirect_path_encodes_bank_reference(self) -> None:
        outcome = CallbackOutcome(
            application_id="app-1", app_ref_no="HPT1", success=False, ech_txn_id="HIM 01&x=2",
        )
        assert outcome.redirect_path() == "/application/app-1?payment=failed&himgrn=HIM+01%26x%3D2"


class TestVerify:
    def test_records_double_verification(self, service, db, make_application, treasury) -> None:
        result = service.initiate(make_application().id)
        treasury["handler"] = lambda request: httpx.Response(
            200, text=f"AppRefNo={result.app_ref_no}|TXN_STAT=1|EchTxnId=HIM0012345"
        )

        verification = service.verify(result.app_ref_no)
        assert verification.verified
        assert verification.data["EchTxnId"] == "HIM0012345"

        txn = _transaction(db, result.app_ref_no)
        assert txn.is_double_verified
        assert txn.double_verification_data["TXN_STAT"] == "1"
        assert txn.verified_at is not None
        assert txn.transaction_status == "initiated"

        sent = treasury["requests"][0]
        assert b"encdata=" in sent.content
        assert b"merchant_code=HIMKOSH230" in sent.content

    def test_verification_payload_is_checksummed(self, service, cipher, make_application, treasury) -> None:
        result = service.initiate(make_application().id)
        service.verify(result.app_ref_no)

        form = dict(httpx.QueryParams(treasury["requests"][0].content.decode()))
        body, checksum = cipher.decrypt(form["encdata"]).rsplit("|checkSum=", 1)
        assert body == f"AppRefNo={result.app_ref_no}|Service_code=TSM|merchant_code=HIMKOSH230"
        assert checksum == generate_checksum(body)

    def test_timeout_leaves_state_untouched(self, service, db, make_application, treasury) -> None:
        result = service.initiate(make_application().id)

        def timeout(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        treasury["handler"] = timeout
        with pytest.raises(GatewayUnavailableError):
            service.verify(result.app_ref_no)

        txn = _transaction(db, result.app_ref_no)
        assert not txn.is_double_verified
        assert txn.double_verification_data is None

    def test_unknown_reference_makes_no_call(self, service, treasury) -> None:
        with pytest.raises(TransactionNotFoundError):
            service.verify("HPT0000000000000ZZZZ")
        assert treasury["requests"] == []

    def test_verification_never_overwrites_outcome(
        self, service, db, make_application, callback_payload, treasury
    ) -> None:
        result = service.initiate(make_application().id)
        service.handle_callback(callback_payload(result.app_ref_no, status_cd="0", ech_txn_id=""))
        treasury["handler"] = lambda request: httpx.Response(200, text="TXN_STAT=1")

        service.verify(result.app_ref_no)
        txn = _transaction(db, result.app_ref_no)
        assert txn.transaction_status == "failed"
        assert txn.is_double_verified


def test_list_and_config_status(service, make_application) -> None:
    service.initiate(make_application().id)
    service.initiate(make_application().id)

    total, rows = service.list_transactions(limit=1)
    assert total == 2
    assert len(rows) == 1

    status = service.config_status()
    assert status["configured"]
    assert status["keyFilePresent"]
    assert status["ivMode"] == "key"
    assert status["checksumPlacement"] == "embedded"


def test_application_model_payable_statuses() -> None:
    assert HomestayApplication(status="verified_for_payment").is_payable
    assert not HomestayApplication(status="approved").is_payable
