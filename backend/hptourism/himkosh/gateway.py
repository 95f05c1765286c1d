"""
HimKosh Gateway Client: server-to-server calls to the Cyber Treasury Portal.
"""
from typing import Dict, Optional

import httpx
import structlog

from hptourism.himkosh.codec import parse_pipe_string
from hptourism.himkosh.exceptions import GatewayUnavailableError

logger = structlog.get_logger(__name__)


class HimKoshGateway:
    """Posts encrypted verification requests to the treasury.

    Timeouts and transport errors surface as ``GatewayUnavailableError`` so
    the caller can retry later without touching stored state.
    """

    def __init__(
        self,
        verification_url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.verification_url = verification_url
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers={"User-Agent": "HPTourism-Homestay/1.0"},
        )

    def verify(self, encdata: str, merchant_code: str) -> Dict[str, str]:
        """Send a double-verification request and parse the pipe response."""
        try:
            response = self._client.post(
                self.verification_url,
                data={"encdata": encdata, "merchant_code": merchant_code},
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("himkosh_verify_timeout", url=self.verification_url)
            raise GatewayUnavailableError("Treasury verification timed out; retry later") from exc
        except httpx.HTTPError as exc:
            logger.warning("himkosh_verify_failed", url=self.verification_url, error=str(exc))
            raise GatewayUnavailableError(f"Treasury verification failed: {exc}") from exc

        return parse_pipe_string(response.text)

    def close(self) -> None:
        self._client.close()
