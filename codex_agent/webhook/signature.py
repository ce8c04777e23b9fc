"""Webhook signature verification.

GitHub signs each delivery body with HMAC-SHA256 using the webhook secret
and sends the hex digest in ``X-Hub-Signature-256`` as ``sha256=<digest>``.
"""

import hashlib
import hmac
from typing import Optional

SIGNATURE_HEADER = "X-Hub-Signature-256"
SIGNATURE_PREFIX = "sha256="


class SignatureVerificationError(Exception):
    """Raised when a delivery's signature is missing, malformed or wrong."""

    pass


def compute_signature(secret: str, body: bytes) -> str:
    """Return the ``sha256=<hex>`` signature GitHub would send for body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(secret: str, body: bytes, signature_header: Optional[str]) -> None:
    """Check a delivery signature against the shared secret.

    Args:
        secret: The configured webhook secret.
        body: The raw request body, exactly as received.
        signature_header: Value of the X-Hub-Signature-256 header.

    Raises:
        SignatureVerificationError: If the header is absent, malformed, or
            does not match the body.
    """
    if not signature_header:
        raise SignatureVerificationError(f"missing {SIGNATURE_HEADER} header")

    if not signature_header.startswith(SIGNATURE_PREFIX):
        raise SignatureVerificationError("unsupported signature format")

    expected = compute_signature(secret, body).encode("ascii")
    received = signature_header.encode("utf-8", "surrogateescape")
    if not hmac.compare_digest(expected, received):
        raise SignatureVerificationError("signature does not match payload")
