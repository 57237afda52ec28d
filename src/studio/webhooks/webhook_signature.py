"""HMAC signatures for vendor callbacks."""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_HEADER = "X-Signature"
SIGNATURE_PREFIX = "sha256="


def sign_payload(body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` signature of ``body``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check ``signature`` against ``body`` in constant time."""
    if not signature:
        return False
    expected = sign_payload(body, secret)
    return hmac.compare_digest(signature.strip().encode("utf-8"), expected.encode("utf-8"))
