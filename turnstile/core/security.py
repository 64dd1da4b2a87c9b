"""
Payment callback signatures

The payment processor signs the raw request body with HMAC-SHA256 using a
secret shared with this service and sends the hex digest in the
``X-Payment-Signature`` header.
"""

import hashlib
import hmac
from typing import Optional


def sign_payment_callback(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_payment_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """Constant-time comparison of ``signature`` against the expected digest"""
    if not signature:
        return False
    expected = sign_payment_callback(secret, body)
    return hmac.compare_digest(expected, signature.strip().lower())
