"""
Field cipher: AES-256-CBC with an HMAC-SHA256 tag, packed in a
self-describing envelope.

Envelope format (stored as text):

    base64(JSON{"iv": b64, "value": b64, "mac": hex, "tag": ""})

``mac`` is HMAC-SHA256(key, iv_b64 + value_b64). The field names match the
envelopes written by the previous PHP backend, so rows encrypted there stay
readable and ``is_encrypted`` works on both.

The cipher holds only its immutable key and is safe to share across threads.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import os
from typing import Any

import structlog
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from eventguard.config.settings import Settings
from eventguard.core.errors import ConfigurationError, DecryptionError

_log = structlog.get_logger(__name__)

KEY_SIZE = 32  # AES-256
IV_SIZE = 16
ENVELOPE_FIELDS = ("iv", "value", "mac")
_BASE64_PREFIX = "base64:"


def normalise_key(raw: str | bytes) -> bytes:
    """
    Turn configured key material into a 32-byte AES key.

    A ``base64:`` prefix is decoded first. Anything that is not then exactly
    32 bytes is replaced by the first 32 hex characters of its SHA-256
    digest. That keeps arbitrary secrets usable but caps the effective key
    at 128 bits of digest output, so operators are warned.
    """
    if isinstance(raw, str):
        if raw.startswith(_BASE64_PREFIX):
            key = base64.b64decode(raw[len(_BASE64_PREFIX):])
        else:
            key = raw.encode("utf-8")
    else:
        key = raw

    if len(key) == KEY_SIZE:
        return key

    _log.warning(
        "field_key_normalised",
        source_length=len(key),
        detail=(
            "key is not 32 bytes; using a truncated SHA-256 hex digest. "
            "Configure a random 32-byte key to avoid the entropy reduction."
        ),
    )
    return hashlib.sha256(key).hexdigest()[:KEY_SIZE].encode("ascii")


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _mac(key: bytes, iv_b64: str, value_b64: str) -> str:
    return hmac.new(key, (iv_b64 + value_b64).encode("ascii"), hashlib.sha256).hexdigest()


def _parse_envelope(value: str) -> dict[str, Any] | None:
    try:
        decoded = base64.b64decode(value, validate=True)
        payload = json.loads(decoded)
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    return payload


class FieldCipher:
    """
    Stateless symmetric encryption of scalar string values.

    Usage:
        cipher = FieldCipher(settings.encryption_key_material)
        stored = cipher.encrypt("alice@example.com")
        cipher.decrypt(stored)  # "alice@example.com"
    """

    def __init__(self, key: str | bytes | None) -> None:
        self._key = normalise_key(key) if key else None

    @classmethod
    def from_settings(cls, settings: Settings) -> FieldCipher:
        cipher = cls(settings.encryption_key_material)
        if not cipher.configured:
            _log.warning("field_encryption_unconfigured")
        return cipher

    @property
    def configured(self) -> bool:
        return self._key is not None

    def _require_key(self) -> bytes:
        if self._key is None:
            raise ConfigurationError(
                "field_encryption_key or app_key must be set for field encryption"
            )
        return self._key

    def encrypt(self, plaintext: str | None) -> str | None:
        """Encrypt a value. ``None`` and ``""`` are returned unchanged."""
        if plaintext is None or plaintext == "":
            return plaintext
        key = self._require_key()

        iv = os.urandom(IV_SIZE)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(str(plaintext).encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        iv_b64 = _b64(iv)
        value_b64 = _b64(ciphertext)
        envelope = {
            "iv": iv_b64,
            "value": value_b64,
            "mac": _mac(key, iv_b64, value_b64),
            "tag": "",
        }
        return _b64(json.dumps(envelope, separators=(",", ":")).encode("utf-8"))

    def decrypt(self, envelope: str | None) -> str | None:
        """
        Decrypt an envelope produced by :meth:`encrypt`.

        Raises:
            ConfigurationError: no key material is configured.
            DecryptionError: the envelope is malformed or fails the MAC check.
        """
        if envelope is None or envelope == "":
            return envelope
        key = self._require_key()

        payload = _parse_envelope(envelope)
        if payload is None or not all(isinstance(payload.get(f), str) for f in ENVELOPE_FIELDS):
            raise DecryptionError("The payload is invalid.")

        expected = _mac(key, payload["iv"], payload["value"])
        if not hmac.compare_digest(expected, payload["mac"]):
            raise DecryptionError("The MAC is invalid.")

        try:
            iv = base64.b64decode(payload["iv"], validate=True)
            ciphertext = base64.b64decode(payload["value"], validate=True)
            if len(iv) != IV_SIZE:
                raise ValueError("bad IV length")
            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plain = unpadder.update(padded) + unpadder.finalize()
            return plain.decode("utf-8")
        except (binascii.Error, ValueError, UnicodeDecodeError) as exc:
            raise DecryptionError("Could not decrypt the data.") from exc

    @staticmethod
    def is_encrypted(value: object) -> bool:
        """
        Heuristic: does ``value`` look like an envelope?

        Only used to avoid double encryption; it is not a security check.
        """
        if not isinstance(value, str) or not value:
            return False
        payload = _parse_envelope(value)
        return payload is not None and all(f in payload for f in ENVELOPE_FIELDS)
