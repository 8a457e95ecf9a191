"""QR payload codec for encrypted device scan codes.

Devices print QR codes carrying ``base64(IV || AES-128-CBC(PKCS7(json)))``
encrypted with a 16-byte key shared with the device firmware. The codec
decrypts and validates those payloads; ``encrypt`` exists so tools and tests
can produce payloads the way the firmware does.
"""

import base64
import binascii
import json
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from harmony.core.config import Settings

logger = structlog.get_logger()

KEY_SIZE = 16
IV_SIZE = 16
BLOCK_BITS = 128

REQUIRED_FIELDS = ("deviceId", "type", "action", "uniqueCode")


class QRAction(str, Enum):
    """Actions a device QR code can request."""

    SCAN = "SCAN"
    REGISTER = "REGISTER"


class QRDecryptionError(Exception):
    """Payload could not be decrypted. Deliberately carries no cipher detail."""

    def __init__(self) -> None:
        super().__init__("Unable to decrypt QR payload")


class QRValidationError(Exception):
    """Decrypted payload does not match the expected schema."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


@dataclass(frozen=True)
class QRCodecConfig:
    """Key material for the codec, built once at startup."""

    key: bytes

    def __post_init__(self) -> None:
        if len(self.key) != KEY_SIZE:
            raise ValueError(
                f"QR encryption key must be exactly {KEY_SIZE} bytes (got {len(self.key)})"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "QRCodecConfig":
        return cls(key=settings.qr_encryption_key.encode("utf-8"))


@dataclass(frozen=True)
class QRPayload:
    """Validated device payload."""

    device_id: str
    type: str
    action: QRAction
    unique_code: int

    def to_wire(self) -> dict[str, Any]:
        return {
            "deviceId": self.device_id,
            "type": self.type,
            "action": self.action.value,
            "uniqueCode": self.unique_code,
        }


def validate_payload(payload: Any) -> QRPayload:
    """Validate a decrypted payload, failing closed with a specific reason."""
    if not payload:
        raise QRValidationError("Empty payload")
    if not isinstance(payload, dict):
        raise QRValidationError("Payload must be a JSON object")

    for field in REQUIRED_FIELDS:
        if payload.get(field) is None:
            raise QRValidationError(f"Missing field: {field}")

    if not isinstance(payload["deviceId"], str) or not payload["deviceId"].strip():
        raise QRValidationError("deviceId must be a non-empty string")
    if not isinstance(payload["type"], str):
        raise QRValidationError("type must be a string")

    action = payload["action"]
    if action not in (QRAction.SCAN.value, QRAction.REGISTER.value):
        raise QRValidationError(f"Invalid action: {action}")

    # bool is an int subclass; a JSON true is not a counter
    unique_code = payload["uniqueCode"]
    if isinstance(unique_code, bool) or not isinstance(unique_code, int):
        raise QRValidationError("uniqueCode must be an integer")

    return QRPayload(
        device_id=payload["deviceId"].strip(),
        type=payload["type"],
        action=QRAction(action),
        unique_code=unique_code,
    )


class QRCodec:
    """AES-128-CBC codec for device QR payloads."""

    def __init__(self, config: QRCodecConfig):
        self._key = config.key

    def decrypt(self, encrypted: str | bytes) -> Any:
        """Decrypt a base64 blob into the JSON value it carries.

        Every failure (bad base64, bad length, bad padding, non-UTF-8 or
        non-JSON plaintext) raises the same QRDecryptionError.
        """
        try:
            raw = base64.b64decode(encrypted, validate=True)
            if len(raw) < IV_SIZE + IV_SIZE or (len(raw) - IV_SIZE) % IV_SIZE:
                raise ValueError("encrypted data has invalid length")

            iv, ciphertext = raw[:IV_SIZE], raw[IV_SIZE:]
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()

            return json.loads(plaintext.decode("utf-8"))
        except (binascii.Error, ValueError, TypeError, UnicodeDecodeError) as e:
            # json.JSONDecodeError is a ValueError
            logger.warning("QR payload decryption failed", error_type=type(e).__name__)
            raise QRDecryptionError() from None

    def encrypt(self, payload: dict[str, Any] | QRPayload, iv: bytes | None = None) -> str:
        """Encrypt a payload the way device firmware does."""
        if isinstance(payload, QRPayload):
            payload = payload.to_wire()
        iv = iv if iv is not None else os.urandom(IV_SIZE)
        if len(iv) != IV_SIZE:
            raise ValueError(f"IV must be {IV_SIZE} bytes")

        padder = padding.PKCS7(BLOCK_BITS).padder()
        padded = padder.update(json.dumps(payload).encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return base64.b64encode(iv + ciphertext).decode("ascii")

    def decode(self, encrypted: str | bytes) -> QRPayload:
        """Decrypt then validate."""
        return validate_payload(self.decrypt(encrypted))
