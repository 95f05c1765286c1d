"""
HimKosh Errors: typed failures raised by the payment core.

Each error carries the HTTP status the route layer should answer with, so
callers can tell "fix your deployment" apart from "reject this message".
"""


class HimKoshError(Exception):
    """Base class for every HimKosh payment-core failure."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class HimKoshConfigError(HimKoshError):
    """Key file missing or malformed, or required settings absent."""

    status_code = 503


class HimKoshCryptoError(HimKoshError):
    """Encryption or decryption of a payload failed."""

    status_code = 400


class ChecksumMismatchError(HimKoshError):
    """Recomputed checksum differs from the one presented with the message."""

    status_code = 400


class InvalidFieldValueError(HimKoshError):
    """A value cannot be placed on the pipe-delimited wire."""

    status_code = 400


class ApplicationNotFoundError(HimKoshError):
    status_code = 404


class ApplicationNotPayableError(HimKoshError):
    status_code = 400

    def __init__(self, message: str, current_status: str = ""):
        super().__init__(message)
        self.current_status = current_status


class FeeNotCalculatedError(HimKoshError):
    status_code = 400


class TransactionNotFoundError(HimKoshError):
    status_code = 404

    def __init__(self, app_ref_no: str):
        super().__init__(f"Transaction not found: {app_ref_no}")
        self.app_ref_no = app_ref_no


class GatewayUnavailableError(HimKoshError):
    """Network failure or timeout talking to the treasury. Safe to retry."""

    status_code = 503
