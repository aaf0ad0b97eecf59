"""Webhook signature codec.

Signatures follow the Standard Webhooks scheme: an HMAC-SHA256 over
``{webhook-id}.{webhook-timestamp}.{body}``, base64 encoded and prefixed
with the version tag ``v1,``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac

SIGNATURE_VERSION = "v1"
_SECRET_PREFIX = "whsec_"


def decode_secret(secret: str) -> bytes:
    """Return the raw key bytes for a configured secret.

    ``whsec_``-prefixed secrets carry base64 key material after the prefix.
    Any other secret (or a prefixed one that fails to decode) is keyed by
    its UTF-8 bytes.
    """
    if secret.startswith(_SECRET_PREFIX):
        try:
            return base64.b64decode(secret[len(_SECRET_PREFIX):], validate=True)
        except (binascii.Error, ValueError):
            pass
    return secret.encode()


def signed_content(delivery_id: str, timestamp: str, body: str) -> str:
    return f"{delivery_id}.{timestamp}.{body}"


def compute_signature(delivery_id: str, timestamp: str, body: str, secret: str) -> str:
    """Compute the ``v1,<base64>`` signature for a delivery."""
    digest = hmac.new(
        decode_secret(secret),
        signed_content(delivery_id, timestamp, body).encode(),
        hashlib.sha256,
    ).digest()
    return f"{SIGNATURE_VERSION},{base64.b64encode(digest).decode()}"


def verify_signature(
    delivery_id: str,
    timestamp: str,
    body: str,
    secret: str,
    candidate: str,
) -> bool:
    """Recompute the signature and compare it in constant time."""
    expected = compute_signature(delivery_id, timestamp, body, secret)
    return hmac.compare_digest(expected.encode(), candidate.encode())
