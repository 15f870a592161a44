"""Inbound webhook signature check.

Learn: When PAYRELAY_WEBHOOK_SECRET is set, the payment processor signs
the raw request body with HMAC-SHA256 and sends the hex digest in
X-Signature (optionally prefixed "sha256=", GitHub style). The digest
must be computed over the exact bytes received, before JSON parsing.
"""

import hashlib
import hmac

SIGNATURE_HEADER = "X-Signature"


def sign(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(secret: str, payload: bytes, signature: str) -> bool:
    if signature.startswith("sha256="):
        signature = signature[7:]
    return hmac.compare_digest(sign(secret, payload), signature)
