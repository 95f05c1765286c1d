"""
HimKosh Checksum & Cipher Engine.

Algorithm: AES-128 (Rijndael), CBC mode, PKCS7 padding, base64 output.
Text encoding: ASCII, matching the .NET ``Encoding.ASCII`` used on the
treasury side (characters outside 7-bit become ``?``).
Checksum: MD5 over the ASCII bytes, lowercase hex.
"""
import base64
import binascii
import hashlib
import hmac
from enum import Enum
from pathlib import Path
from typing import NamedTuple, Optional

import structlog
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from hptourism.himkosh.exceptions import (
    ChecksumMismatchError,
    HimKoshConfigError,
    HimKoshCryptoError,
)

logger = structlog.get_logger(__name__)

KEY_SIZE = 16
BLOCK_BITS = 128
WIRE_ENCODING = "ascii"


class IVMode(str, Enum):
    """Where the CBC initialization vector comes from."""

    KEY = "key"    # IV = key bytes; what the treasury DLL actually does
    FILE = "file"  # IV = bytes 16..32 of the key file


class ChecksumPlacement(str, Enum):
    """How the request checksum reaches the gateway."""

    EMBEDDED = "embedded"  # only inside encdata
    SEPARATE = "separate"  # inside encdata and as a sibling form field


def _to_wire_bytes(text: str) -> bytes:
    return text.encode(WIRE_ENCODING, errors="replace")


def generate_checksum(text: str) -> str:
    return hashlib.md5(_to_wire_bytes(text)).hexdigest()


def verify_checksum(text: str, presented: Optional[str]) -> bool:
    """Compare against a recomputed checksum, ignoring hex case."""
    if not presented:
        return False
    expected = generate_checksum(text)
    return hmac.compare_digest(expected, presented.strip().lower())


def require_valid_checksum(text: str, presented: Optional[str]) -> None:
    if not verify_checksum(text, presented):
        raise ChecksumMismatchError("Checksum verification failed")


class KeyMaterial(NamedTuple):
    key: bytes
    iv: bytes


class KeyFile:
    """Handle on the ``echallan.key`` file issued by the CTP team.

    Nothing is read until first use, so the service can start before the
    key is provisioned. The loaded bytes are cached; concurrent first loads
    read the same immutable file and converge on identical material.
    """

    def __init__(self, path: str, iv_mode: IVMode = IVMode.KEY):
        self.path = path
        self.iv_mode = IVMode(iv_mode)
        self._material: Optional[KeyMaterial] = None

    @property
    def loaded(self) -> bool:
        return self._material is not None

    def exists(self) -> bool:
        return Path(self.path).is_file()

    def material(self) -> KeyMaterial:
        if self._material is None:
            self._material = self._load()
        return self._material

    def _load(self) -> KeyMaterial:
        try:
            raw = Path(self.path).read_bytes()
        except OSError as exc:
            logger.error("himkosh_key_missing", path=self.path, error=str(exc))
            raise HimKoshConfigError(
                f"Key file not found at: {self.path}. Obtain echallan.key from the CTP team "
                "or set HIMKOSH_KEY_FILE_PATH."
            ) from exc

        if len(raw) < KEY_SIZE:
            raise HimKoshConfigError(
                f"Key file {self.path} holds {len(raw)} bytes; at least {KEY_SIZE} are required"
            )

        key = raw[:KEY_SIZE]
        if self.iv_mode is IVMode.FILE:
            if len(raw) < 2 * KEY_SIZE:
                raise HimKoshConfigError(
                    f"IV mode 'file' needs a {2 * KEY_SIZE}-byte key file; {self.path} has {len(raw)}"
                )
            iv = raw[KEY_SIZE:2 * KEY_SIZE]
        else:
            iv = key

        logger.info("himkosh_key_loaded", path=self.path, size=len(raw), iv_mode=self.iv_mode.value)
        return KeyMaterial(key=key, iv=iv)


class HimKoshCipher:
    """AES-128-CBC encryption of HimKosh field strings."""

    def __init__(self, key_file: KeyFile):
        self.key_file = key_file

    def _cipher(self) -> Cipher:
        material = self.key_file.material()
        return Cipher(algorithms.AES(material.key), modes.CBC(material.iv))

    def encrypt(self, text: str) -> str:
        """Encrypt a field string and return standard base64."""
        cipher = self._cipher()
        try:
            padder = padding.PKCS7(BLOCK_BITS).padder()
            padded = padder.update(_to_wire_bytes(text)) + padder.finalize()
            encryptor = cipher.encryptor()
            encrypted = encryptor.update(padded) + encryptor.finalize()
        except ValueError as exc:
            raise HimKoshCryptoError(f"Encryption failed: {exc}") from exc
        return base64.b64encode(encrypted).decode("ascii")

    def decrypt(self, payload: str) -> str:
        """Decrypt a base64 payload back into its field string."""
        cipher = self._cipher()
        try:
            # form-encoded posts can turn '+' into ' '
            encrypted = base64.b64decode((payload or "").strip().replace(" ", "+"), validate=True)
            if not encrypted:
                raise ValueError("empty payload")
            decryptor = cipher.decryptor()
            padded = decryptor.update(encrypted) + decryptor.finalize()
            unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
            plain = unpadder.update(padded) + unpadder.finalize()
        except (ValueError, binascii.Error) as exc:
            raise HimKoshCryptoError(f"Decryption failed: {exc}") from exc
        return plain.decode(WIRE_ENCODING, errors="replace")
