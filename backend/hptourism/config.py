"""
Application Configuration: environment settings and the resolved HimKosh config.
Centralizes all config from .env with Pydantic Settings for validation.
"""
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

import structlog
from pydantic_settings import BaseSettings

from hptourism.himkosh.crypto import ChecksumPlacement, IVMode
from hptourism.himkosh.exceptions import HimKoshConfigError

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent

logger = structlog.get_logger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Core ---
    APP_NAME: str = "HP Tourism Homestay Payments API"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = False

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'hptourism.db'}"

    # --- HTTP ---
    CORS_ORIGINS: list[str] = ["*"]
    FRONTEND_URL: str = ""
    INITIATE_RATE_LIMIT: int = 10  # requests per client per minute

    # --- HimKosh (Cyber Treasury Portal) endpoints ---
    HIMKOSH_PAYMENT_URL: str = "https://himkosh.hp.nic.in/echallan/WebPages/wrfApplicationRequest.aspx"
    HIMKOSH_VERIFICATION_URL: str = "https://himkosh.hp.nic.in/eChallan/webpages/AppVerification.aspx"
    HIMKOSH_CHALLAN_PRINT_URL: str = "https://himkosh.hp.nic.in/eChallan/challan_reports/reportViewer.aspx"

    # --- HimKosh merchant credentials (issued by the CTP team) ---
    HIMKOSH_MERCHANT_CODE: str = ""
    HIMKOSH_DEPT_ID: str = ""
    HIMKOSH_SERVICE_CODE: str = ""
    HIMKOSH_DDO: str = ""
    HIMKOSH_HEAD: str = ""
    HIMKOSH_HEAD2: str = ""
    HIMKOSH_HEAD2_AMOUNT: int = 0
    HIMKOSH_RETURN_URL: str = "https://hptourism.osipl.dev/api/himkosh/callback"
    HIMKOSH_KEY_FILE_PATH: str = ""

    # --- HimKosh wire contract ---
    HIMKOSH_IV_MODE: IVMode = IVMode.KEY
    HIMKOSH_CHECKSUM_PLACEMENT: ChecksumPlacement = ChecksumPlacement.EMBEDDED
    HIMKOSH_HTTP_TIMEOUT_SECONDS: float = 15.0
    HIMKOSH_ALLOW_PLACEHOLDERS: bool = False

    # --- Test payments ---
    HIMKOSH_TEST_MODE: bool = False
    HIMKOSH_TEST_AMOUNT: int = 1

    # --- Certificates ---
    CERTIFICATE_VALIDITY_YEARS: int = 1

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "console"  # console | json

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


# Documented stand-ins so non-production environments work before CTP
# credentials are provisioned.
PLACEHOLDERS = {
    "merchant_code": "HIMKOSH228",
    "dept_id": "228",
    "service_code": "TRM",
    "ddo": "SML10-001",
    "head1": "0230-00-104-01",
}


@dataclass(frozen=True)
class HimKoshConfig:
    """Validated, immutable view of the HimKosh settings."""

    payment_url: str
    verification_url: str
    challan_print_url: str
    merchant_code: str
    dept_id: str
    service_code: str
    ddo: str
    head1: str
    return_url: str
    key_file_path: str
    head2: Optional[str] = None
    head2_amount: int = 0
    iv_mode: IVMode = IVMode.KEY
    checksum_placement: ChecksumPlacement = ChecksumPlacement.EMBEDDED
    http_timeout: float = 15.0
    test_mode: bool = False
    test_amount: int = 1
    config_status: str = "production"  # production | placeholder
    missing_fields: List[str] = field(default_factory=list)

    @property
    def is_configured(self) -> bool:
        """True only when every credential came from the environment."""
        return self.config_status == "production"


def resolve_key_file_path(explicit_path: Optional[str] = None) -> str:
    """Return the first existing key file among the conventional locations.

    Falls back to the package-relative path; the cipher raises a clear
    configuration error at first use if nothing is there.
    """
    default = BASE_DIR / "hptourism" / "himkosh" / "echallan.key"
    candidates = [
        explicit_path,
        str(Path.cwd() / "echallan.key"),
        str(BASE_DIR / "echallan.key"),
        str(default),
    ]
    for candidate in candidates:
        if candidate and Path(candidate).is_file():
            return candidate
    return explicit_path or str(default)


def resolve_himkosh_config(settings: Optional[Settings] = None) -> HimKoshConfig:
    """Validate the HimKosh settings and fill documented placeholders.

    Raises:
        HimKoshConfigError: required credentials are missing in production
            and placeholders are not explicitly allowed.
    """
    settings = settings or get_settings()

    values = {
        "merchant_code": settings.HIMKOSH_MERCHANT_CODE.strip(),
        "dept_id": settings.HIMKOSH_DEPT_ID.strip(),
        "service_code": settings.HIMKOSH_SERVICE_CODE.strip(),
        "ddo": settings.HIMKOSH_DDO.strip(),
        "head1": settings.HIMKOSH_HEAD.strip(),
    }
    missing = [name for name, value in values.items() if not value]

    config_status = "production"
    if missing:
        if settings.is_production and not settings.HIMKOSH_ALLOW_PLACEHOLDERS:
            logger.error("himkosh_config_incomplete", missing_fields=missing, environment=settings.ENVIRONMENT)
            raise HimKoshConfigError(
                f"HimKosh configuration incomplete in production: missing {', '.join(missing)}"
            )
        logger.warning("himkosh_config_placeholders", missing_fields=missing)
        for name in missing:
            values[name] = PLACEHOLDERS[name]
        config_status = "placeholder"

    return HimKoshConfig(
        payment_url=settings.HIMKOSH_PAYMENT_URL,
        verification_url=settings.HIMKOSH_VERIFICATION_URL,
        challan_print_url=settings.HIMKOSH_CHALLAN_PRINT_URL,
        return_url=settings.HIMKOSH_RETURN_URL,
        key_file_path=resolve_key_file_path(settings.HIMKOSH_KEY_FILE_PATH or None),
        head2=settings.HIMKOSH_HEAD2.strip() or None,
        head2_amount=settings.HIMKOSH_HEAD2_AMOUNT,
        iv_mode=settings.HIMKOSH_IV_MODE,
        checksum_placement=settings.HIMKOSH_CHECKSUM_PLACEMENT,
        http_timeout=settings.HIMKOSH_HTTP_TIMEOUT_SECONDS,
        test_mode=settings.HIMKOSH_TEST_MODE,
        test_amount=settings.HIMKOSH_TEST_AMOUNT,
        config_status=config_status,
        missing_fields=missing,
        **values,
    )
