"""Tests for the webhook signature codec."""

from __future__ import annotations

import base64

import pytest

from src.webhook.signature import (
    compute_signature,
    decode_secret,
    signed_content,
    verify_signature,
)
from tests.conftest import CUSTOMER_BODY, TEST_SECRET, TEST_TIMESTAMP, sign

DELIVERY_ID = "msg_test123"
PING_BODY = '{"event_type":"ping","data":{"success":true}}'


def test_signature_has_version_prefix() -> None:
    signature = compute_signature(DELIVERY_ID, TEST_TIMESTAMP, PING_BODY, TEST_SECRET)
    assert signature.startswith("v1,")
    # 32-byte digest -> 44 base64 characters
    assert len(base64.b64decode(signature[3:])) == 32


def test_signature_matches_reference_hmac() -> None:
    expected = sign("msg_test003", TEST_TIMESTAMP, CUSTOMER_BODY, TEST_SECRET)
    assert compute_signature("msg_test003", TEST_TIMESTAMP, CUSTOMER_BODY, TEST_SECRET) == expected


def test_signed_content_is_period_joined() -> None:
    assert signed_content("a.b", "1", "{}") == "a.b.1.{}"


def test_compute_is_deterministic() -> None:
    first = compute_signature(DELIVERY_ID, TEST_TIMESTAMP, PING_BODY, TEST_SECRET)
    second = compute_signature(DELIVERY_ID, TEST_TIMESTAMP, PING_BODY, TEST_SECRET)
    assert first == second


def test_verify_accepts_computed_signature() -> None:
    signature = compute_signature(DELIVERY_ID, TEST_TIMESTAMP, PING_BODY, TEST_SECRET)
    assert verify_signature(DELIVERY_ID, TEST_TIMESTAMP, PING_BODY, TEST_SECRET, signature) is True


def test_verify_rejects_garbage_signature() -> None:
    assert verify_signature(
        DELIVERY_ID, TEST_TIMESTAMP, PING_BODY, TEST_SECRET, "v1,invalid_signature_here",
    ) is False


def test_verify_rejects_signature_without_prefix() -> None:
    signature = compute_signature(DELIVERY_ID, TEST_TIMESTAMP, PING_BODY, TEST_SECRET)
    assert verify_signature(
        DELIVERY_ID, TEST_TIMESTAMP, PING_BODY, TEST_SECRET, signature[3:],
    ) is False


@pytest.mark.parametrize("position", ["delivery_id", "timestamp", "body", "secret"])
def test_single_byte_mutation_fails_verification(position: str) -> None:
    """Changing one character of any signed input invalidates the signature."""
    inputs = {
        "delivery_id": DELIVERY_ID,
        "timestamp": TEST_TIMESTAMP,
        "body": PING_BODY,
        "secret": TEST_SECRET,
    }
    signature = compute_signature(**inputs)
    value = inputs[position]
    inputs[position] = value[:-1] + ("x" if value[-1] != "x" else "y")
    assert verify_signature(candidate=signature, **inputs) is False


def test_modified_body_fails_verification() -> None:
    signature = compute_signature(DELIVERY_ID, TEST_TIMESTAMP, PING_BODY, TEST_SECRET)
    modified = '{"event_type":"ping","data":{"success":false}}'
    assert verify_signature(DELIVERY_ID, TEST_TIMESTAMP, modified, TEST_SECRET, signature) is False


class TestDecodeSecret:
    def test_plain_secret_is_utf8(self) -> None:
        assert decode_secret("test_secret_key") == b"test_secret_key"

    def test_whsec_secret_is_base64_decoded(self) -> None:
        raw = b"\x00\x01binary-key\xff"
        assert decode_secret("whsec_" + base64.b64encode(raw).decode()) == raw

    def test_undecodable_whsec_secret_falls_back_to_utf8(self) -> None:
        assert decode_secret("whsec_not base64!") == b"whsec_not base64!"

    def test_whsec_signature_uses_decoded_key(self) -> None:
        raw = b"0123456789abcdef"
        secret = "whsec_" + base64.b64encode(raw).decode()
        signature = compute_signature(DELIVERY_ID, TEST_TIMESTAMP, PING_BODY, secret)
        assert signature == sign(DELIVERY_ID, TEST_TIMESTAMP, PING_BODY, raw.decode())
