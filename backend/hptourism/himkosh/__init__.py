from hptourism.himkosh.codec import (
    CallbackResponse, PaymentRequest, RequestStrings,
    build_request_string, build_verification_string, parse_response_string,
)
from hptourism.himkosh.crypto import HimKoshCipher, KeyFile, generate_checksum, verify_checksum

__all__ = [
    "CallbackResponse", "PaymentRequest", "RequestStrings",
    "build_request_string", "build_verification_string", "parse_response_string",
    "HimKoshCipher", "KeyFile", "generate_checksum", "verify_checksum",
]
