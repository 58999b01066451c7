"""Unit tests for eventguard.core.security."""
from datetime import timedelta

import pytest

from eventguard.core.errors import AuthError, ErrorCode
from eventguard.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    generate_reset_token,
    hash_password,
    hash_reset_token,
    safe_str_compare,
    verify_password,
)
from tests.conftest import TEST_SETTINGS


# ─── Password hashing ─────────────────────────────────────────────────────────

def test_hash_password_produces_bcrypt_hash():
    h = hash_password("hunter2")
    assert h.startswith("$2b$")


def test_verify_password_correct():
    h = hash_password("correct-horse")
    assert verify_password("correct-horse", h) is True


def test_verify_password_wrong():
    h = hash_password("correct-horse")
    assert verify_password("wrong-password", h) is False


def test_verify_password_malformed_hash():
    assert verify_password("anything", "not-a-bcrypt-hash") is False


def test_hash_is_non_deterministic():
    """bcrypt should produce different hashes for the same input."""
    assert hash_password("same") != hash_password("same")


# ─── JWT ──────────────────────────────────────────────────────────────────────

def test_create_and_decode_access_token():
    token = create_access_token(
        subject="42",
        role="admin",
        extra_claims={"email_verified": True},
        settings=TEST_SETTINGS,
    )
    payload = decode_token(token, settings=TEST_SETTINGS)
    assert payload["sub"] == "42"
    assert payload["role"] == "admin"
    assert payload["email_verified"] is True
    assert payload["type"] == "access"


def test_create_and_decode_refresh_token():
    token = create_refresh_token("42", settings=TEST_SETTINGS)
    payload = decode_token(token, settings=TEST_SETTINGS)
    assert payload["sub"] == "42"
    assert payload["type"] == "refresh"
    assert "role" not in payload


def test_expired_token_raises():
    token = create_access_token(
        "x", "user", expires_delta=timedelta(seconds=-1), settings=TEST_SETTINGS
    )
    with pytest.raises(AuthError) as info:
        decode_token(token, settings=TEST_SETTINGS)
    assert info.value.code is ErrorCode.AUTH_TOKEN_EXPIRED


def test_tampered_token_raises():
    token = create_access_token("x", "user", settings=TEST_SETTINGS)
    bad = token[:-4] + ("aaaa" if not token.endswith("aaaa") else "bbbb")
    with pytest.raises(AuthError) as info:
        decode_token(bad, settings=TEST_SETTINGS)
    assert info.value.code is ErrorCode.AUTH_TOKEN_INVALID


# ─── Reset tokens ─────────────────────────────────────────────────────────────

def test_reset_tokens_are_unique_and_hashed():
    a, b = generate_reset_token(), generate_reset_token()
    assert a != b
    assert len(hash_reset_token(a)) == 64
    assert hash_reset_token(a) == hash_reset_token(a)
    assert hash_reset_token(a) != hash_reset_token(b)


# ─── safe_str_compare ─────────────────────────────────────────────────────────

def test_safe_str_compare_equal():
    assert safe_str_compare("abc", "abc") is True


def test_safe_str_compare_not_equal():
    assert safe_str_compare("abc", "xyz") is False


def test_safe_str_compare_empty():
    assert safe_str_compare("", "") is True
    assert safe_str_compare("a", "") is False
