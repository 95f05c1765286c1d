"""Shared fixtures: throwaway SQLite database, key file, cipher and mock treasury."""

from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from decimal import Decimal  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from hptourism.config import HimKoshConfig, Settings  # noqa: E402
from hptourism.database import Base, get_db  # noqa: E402
from hptourism.himkosh.crypto import HimKoshCipher, KeyFile, generate_checksum  # noqa: E402
from hptourism.himkosh.gateway import HimKoshGateway  # noqa: E402
from hptourism.himkosh.service import HimKoshPaymentService  # noqa: E402
from hptourism.models import DDOCode, HomestayApplication  # noqa: E402

TEST_KEY = b"0123456789ABCDEF"
VERIFY_URL = "https://ctp.test/eChallan/webpages/AppVerification.aspx"


@pytest.fixture
def key_file(tmp_path):
    path = tmp_path / "echallan.key"
    path.write_bytes(TEST_KEY)
    return path


@pytest.fixture
def himkosh_config(key_file) -> HimKoshConfig:
    return HimKoshConfig(
        payment_url="https://ctp.test/echallan/WebPages/wrfApplicationRequest.aspx",
        verification_url=VERIFY_URL,
        challan_print_url="https://ctp.test/eChallan/challan_reports/reportViewer.aspx",
        merchant_code="HIMKOSH230",
        dept_id="CTO00-068",
        service_code="TSM",
        ddo="SML00-532",
        head1="1452-00-800-01",
        return_url="https://portal.test/api/himkosh/callback",
        key_file_path=str(key_file),
    )


@pytest.fixture
def cipher(himkosh_config) -> HimKoshCipher:
    return HimKoshCipher(KeyFile(himkosh_config.key_file_path, himkosh_config.iv_mode))


@pytest.fixture
def app_settings() -> Settings:
    return Settings(FRONTEND_URL="", CERTIFICATE_VALIDITY_YEARS=1)


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def treasury():
    """Scripted verification endpoint; set ``treasury['handler']`` per test."""
    state = {
        "handler": lambda request: httpx.Response(200, text="TXN_STAT=1"),
        "requests": [],
    }

    def dispatch(request: httpx.Request) -> httpx.Response:
        state["requests"].append(request)
        return state["handler"](request)

    state["transport"] = httpx.MockTransport(dispatch)
    return state


@pytest.fixture
def gateway(treasury) -> HimKoshGateway:
    gw = HimKoshGateway(VERIFY_URL, timeout=2.0, transport=treasury["transport"])
    yield gw
    gw.close()


@pytest.fixture
def service(db, himkosh_config, cipher, gateway, app_settings) -> HimKoshPaymentService:
    return HimKoshPaymentService(db, himkosh_config, cipher, gateway, settings=app_settings)


@pytest.fixture
def make_application(db):
    def _make(**overrides) -> HomestayApplication:
        fields = {
            "application_number": f"HP-HST-APP-{len(db.query(HomestayApplication).all()) + 1:04d}",
            "owner_name": "Ramesh Thakur",
            "district": "Kullu",
            "total_fee": Decimal("6000.00"),
            "status": "payment_pending",
        }
        fields.update(overrides)
        application = HomestayApplication(**fields)
        db.add(application)
        db.commit()
        db.refresh(application)
        return application

    return _make


@pytest.fixture
def kullu_ddo(db) -> DDOCode:
    mapping = DDOCode(
        district="Kullu",
        ddo_code="KLU00-123",
        ddo_description="District Tourism Development Officer, Kullu",
        treasury_code="KLU00",
    )
    db.add(mapping)
    db.commit()
    return mapping


@pytest.fixture
def callback_payload(cipher):
    """Builds an encrypted treasury callback for an AppRefNo."""

    def _build(
        app_ref_no: str,
        status_cd: str = "1",
        ech_txn_id: str = "HIM0012345",
        checksum: str | None = None,
    ) -> str:
        body = (
            f"EchTxnId={ech_txn_id}|BankCIN=CIN20261017001|Bank=SBI"
            f"|Status={'Completed successfully' if status_cd == '1' else 'Transaction failed'}"
            f"|StatusCd={status_cd}|AppRefNo={app_ref_no}|Amount=6000"
            f"|Payment_date=17102026103000|DeptRefNo=HP-HST-APP-0001|BankName=SBI"
        )
        return cipher.encrypt(f"{body}|checksum={checksum or generate_checksum(body)}")

    return _build


@pytest.fixture
def client(session_factory, himkosh_config, cipher, gateway):
    from hptourism.main import app
    from hptourism.routes.himkosh import get_cipher, get_gateway, get_himkosh_config
    from hptourism.utils.rate_limiter import reset_rate_limits

    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_himkosh_config] = lambda: himkosh_config
    app.dependency_overrides[get_cipher] = lambda: cipher
    app.dependency_overrides[get_gateway] = lambda: gateway
    reset_rate_limits()

    yield TestClient(app)

    app.dependency_overrides.clear()
