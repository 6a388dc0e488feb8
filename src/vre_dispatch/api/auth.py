"""Webhook request authentication.

A request is accepted when it carries either `Authorization: Bearer <secret>`
or a hex HMAC-SHA256 of the raw body, keyed with the same secret, in
`X-Signature` or `X-Webhook-Signature`. All comparisons are constant time.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping

from vre_dispatch.errors import AuthenticationError

SIGNATURE_HEADERS = ("X-Signature", "X-Webhook-Signature")


def sign_body(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _bearer_matches(secret: str, header: str | None) -> bool:
    if not header:
        return False
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    return hmac.compare_digest(token.strip().encode(), secret.encode())


def _signature_matches(secret: str, body: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    signature = signature.strip()
    # Some senders prefix the digest with the algorithm name
    if signature.lower().startswith("sha256="):
        signature = signature[len("sha256="):]
    expected = sign_body(secret, body)
    return hmac.compare_digest(signature.lower().encode(), expected.encode())


def verify_request(secret: str, headers: Mapping[str, str], body: bytes) -> str:
    """Check a webhook request against the shared secret.

    Returns the method that matched ("bearer" or "hmac"). Raises
    AuthenticationError when neither credential is present and valid.
    """
    if _bearer_matches(secret, headers.get("Authorization")):
        return "bearer"
    for name in SIGNATURE_HEADERS:
        if _signature_matches(secret, body, headers.get(name)):
            return "hmac"
    if headers.get("Authorization") or any(headers.get(n) for n in SIGNATURE_HEADERS):
        raise AuthenticationError("Invalid webhook credentials")
    raise AuthenticationError("Missing webhook credentials")
