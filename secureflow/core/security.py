"""Security utilities for webhook signatures, fingerprints and token checks"""

import hashlib
import hmac
import secrets
from typing import Optional


# --- Webhook signatures (HMAC-SHA256) ---
def compute_signature(secret: str, payload: bytes) -> str:
    """
    Compute the hex HMAC-SHA256 digest of a raw webhook payload.
    Args:
        secret: The project's shared webhook secret
        payload: The raw request body, exactly as received
    Returns:
        str: The hex digest
    """
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(secret: Optional[str], payload: bytes, signature: Optional[str]) -> bool:
    """
    Verify a webhook signature in constant time.
    Args:
        secret: The project's shared webhook secret
        payload: The raw request body
        signature: Hex digest received in the signature header
    Returns:
        bool: True if the signature matches, False otherwise (including when
        no secret is configured or no signature was sent)
    """
    if not secret or not signature:
        return False
    expected = compute_signature(secret, payload)
    return hmac.compare_digest(expected, signature.strip().lower())


def verify_token(expected: str, provided: Optional[str]) -> bool:
    """Constant-time comparison for static bearer/admin tokens."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())


def generate_webhook_secret() -> str:
    """
    Generate a secure random webhook secret.
    Returns:
        str: 32 bytes hex encoded
    """
    return secrets.token_hex(32)


def vulnerability_fingerprint(file: str, line: Optional[int], vuln_type: str) -> str:
    """Stable content key for a finding, used to match findings across runs."""
    raw = f"{file}:{line if line is not None else '-'}:{vuln_type.strip().lower()}"
    return hashlib.sha256(raw.encode()).hexdigest()[:32]
