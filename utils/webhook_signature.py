"""
HMAC-SHA256 verification for Whop webhook deliveries
"""
import hashlib
import hmac
from typing import Optional

from services.errors import InvalidSignature

SIGNATURE_HEADER = "whop-signature"

_PREFIXES = ("sha256=", "v1,", "v1=")


def compute_signature(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: Optional[str], secret: str) -> None:
    """
    Raise InvalidSignature unless ``signature`` matches the body.

    Accepts a bare hex digest or one carrying a ``sha256=`` / ``v1,`` prefix.
    """
    if not signature:
        raise InvalidSignature("Missing webhook signature header")

    candidate = signature.strip()
    for prefix in _PREFIXES:
        if candidate.lower().startswith(prefix):
            candidate = candidate[len(prefix):]
            break

    expected = compute_signature(payload, secret)
    # Header text may be arbitrary; compare as bytes
    supplied = candidate.lower().encode("utf-8", "surrogateescape")
    if not hmac.compare_digest(expected.encode("ascii"), supplied):
        raise InvalidSignature("Webhook signature does not match")
