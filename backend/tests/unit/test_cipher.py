"""Unit tests for eventguard.services.encryption.cipher."""
import base64
import hashlib
import json

import pytest

from eventguard.core.errors import ConfigurationError, DecryptionError
from eventguard.services.encryption.cipher import FieldCipher, normalise_key
from tests.conftest import FIELD_KEY, TEST_SETTINGS


@pytest.fixture
def cipher() -> FieldCipher:
    return FieldCipher(FIELD_KEY)


def _envelope(value: str) -> dict:
    return json.loads(base64.b64decode(value))


# ─── Round trip ───────────────────────────────────────────────────────────────

def test_encrypt_then_decrypt_returns_plaintext(cipher):
    stored = cipher.encrypt("alice@example.com")
    assert stored != "alice@example.com"
    assert cipher.decrypt(stored) == "alice@example.com"


def test_encrypt_handles_unicode(cipher):
    assert cipher.decrypt(cipher.encrypt("Zürich – café ☕")) == "Zürich – café ☕"


def test_encryption_is_randomised(cipher):
    assert cipher.encrypt("same") != cipher.encrypt("same")


@pytest.mark.parametrize("value", [None, ""])
def test_empty_values_pass_through(cipher, value):
    assert cipher.encrypt(value) == value
    assert cipher.decrypt(value) == value


def test_envelope_shape(cipher):
    payload = _envelope(cipher.encrypt("x"))
    assert set(payload) == {"iv", "value", "mac", "tag"}
    assert payload["tag"] == ""
    assert len(base64.b64decode(payload["iv"])) == 16
    assert len(payload["mac"]) == 64  # hex SHA-256


def test_from_settings_uses_field_key():
    stored = FieldCipher.from_settings(TEST_SETTINGS).encrypt("secret")
    assert FieldCipher(FIELD_KEY).decrypt(stored) == "secret"


# ─── Tampering ────────────────────────────────────────────────────────────────

def test_modified_ciphertext_fails_mac(cipher):
    payload = _envelope(cipher.encrypt("hello"))
    payload["value"] = base64.b64encode(b"\x00" * 16).decode()
    forged = base64.b64encode(json.dumps(payload).encode()).decode()
    with pytest.raises(DecryptionError):
        cipher.decrypt(forged)


def test_other_key_cannot_decrypt(cipher):
    stored = cipher.encrypt("hello")
    with pytest.raises(DecryptionError):
        FieldCipher("another-key-that-is-32-bytes-long").decrypt(stored)


@pytest.mark.parametrize(
    "garbage",
    ["not base64 at all!", base64.b64encode(b"[1, 2]").decode(), base64.b64encode(b"{}").decode()],
)
def test_malformed_envelope_raises(cipher, garbage):
    with pytest.raises(DecryptionError):
        cipher.decrypt(garbage)


# ─── Missing key ──────────────────────────────────────────────────────────────

def test_unconfigured_cipher_raises_configuration_error():
    cipher = FieldCipher(None)
    assert cipher.configured is False
    with pytest.raises(ConfigurationError):
        cipher.encrypt("x")


# ─── is_encrypted ─────────────────────────────────────────────────────────────

def test_is_encrypted_recognises_envelopes(cipher):
    assert FieldCipher.is_encrypted(cipher.encrypt("x")) is True


@pytest.mark.parametrize("value", [None, "", "plain@example.com", 42, base64.b64encode(b"{}").decode()])
def test_is_encrypted_rejects_other_values(value):
    assert FieldCipher.is_encrypted(value) is False


# ─── Key normalisation ────────────────────────────────────────────────────────

def test_32_byte_key_used_as_is():
    assert normalise_key(FIELD_KEY) == FIELD_KEY.encode()


def test_base64_prefixed_key_is_decoded():
    raw = bytes(range(32))
    assert normalise_key("base64:" + base64.b64encode(raw).decode()) == raw


def test_short_key_is_replaced_by_digest_prefix():
    assert normalise_key("short") == hashlib.sha256(b"short").hexdigest()[:32].encode()


def test_short_keys_still_round_trip():
    cipher = FieldCipher("short")
    assert cipher.decrypt(cipher.encrypt("value")) == "value"
