"""Shared-secret checks for machine callers."""

from __future__ import annotations

import hashlib
import hmac


def secret_matches(provided: str | None, expected: str) -> bool:
    """Constant-time comparison. An unset expected secret never matches."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def sign_payload(body: bytes, secret: str) -> str:
    """GitHub-style ``sha256=<hex>`` signature of a webhook body."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_push_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check an ``x-hub-signature-256`` header against the raw body."""
    if not signature:
        return False
    return hmac.compare_digest(signature.encode(), sign_payload(body, secret).encode())
