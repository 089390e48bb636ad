"""
Shared-secret checks for machine-to-machine endpoints.
"""
import hmac
from typing import Optional


def constant_time_equal(provided: Optional[str], expected: Optional[str]) -> bool:
    """
    Compare two secrets without leaking timing information.

    Surrounding whitespace is ignored. An empty value on either side never matches.
    """
    provided = (provided or "").strip()
    expected = (expected or "").strip()
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def bearer_token(authorization_header: Optional[str]) -> Optional[str]:
    """Extract the token from an `Authorization: Bearer <token>` header."""
    if not authorization_header:
        return None
    scheme, _, token = authorization_header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None
