"""Secret codec for sealing broker credentials at rest."""

from __future__ import annotations

import base64
import binascii
import hashlib
from typing import List, Sequence

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from src.config import get_settings
from src.core.brokers.exceptions import DecodeError


def _to_fernet(key: str) -> Fernet:
    """Build a Fernet from a configured key.

    Proper Fernet keys (32 url-safe base64 bytes) are used as-is; any other
    passphrase is stretched with SHA-256.
    """
    try:
        if len(base64.urlsafe_b64decode(key.encode())) == 32:
            return Fernet(key.encode())
    except (binascii.Error, ValueError):
        pass
    digest = hashlib.sha256(key.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


class SecretCodec:
    """Reversible, authenticated transform for sensitive fields.

    The first key seals; every key can open, which allows rotating keys
    without re-entering credentials.
    """

    def __init__(self, keys: Sequence[str]):
        if not keys:
            raise ValueError("At least one credential key is required")
        self._fernets: List[Fernet] = [_to_fernet(k) for k in keys]
        self._multi = MultiFernet(self._fernets)

    def seal(self, plaintext: str) -> str:
        return self._multi.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def open(self, ciphertext: str) -> str:
        try:
            return self._multi.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise DecodeError("Stored credential could not be unsealed") from e

    def rotate(self, ciphertext: str) -> str:
        """Re-seal a value under the primary key."""
        try:
            return self._multi.rotate(ciphertext.encode("ascii")).decode("ascii")
        except (InvalidToken, UnicodeError) as e:
            raise DecodeError("Stored credential could not be unsealed") from e


def get_secret_codec() -> SecretCodec:
    """Factory function for the configured codec."""
    return SecretCodec(get_settings().credential_key_list)
