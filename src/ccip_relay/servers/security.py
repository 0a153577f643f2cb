"""
HMAC bearer tokens guarding the record sync endpoint.

A token is ``<payload>.<signature>`` where both parts are unpadded
urlsafe base64; the payload is canonical JSON carrying ``iat``, ``exp``,
a random ``nonce`` and the ``scope`` it was issued for.
"""

import base64
import hashlib
import hmac
import json
import secrets
import string
import time
from typing import Dict, Optional

from ..engine.exceptions import InvalidTokenError, TokenExpiredError

SYNC_SCOPE = "ens-sync"


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("utf-8")


def _b64decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _sign(private_key: str, payload_b64: str) -> bytes:
    return hmac.new(
        key=private_key.encode(),
        msg=payload_b64.encode(),
        digestmod=hashlib.sha256,
    ).digest()


def create_private_key(*, prefix: str = "", length: int = 32) -> str:
    """
    Generate a random shared key suitable for ``SYNC_TOKEN_KEY``.

    Args:
        prefix: A custom string to prepend to the random key.
        length: The number of random characters to generate.
    """
    alphabet = string.ascii_letters + string.digits
    random_part = "".join(secrets.choice(alphabet) for _ in range(length))
    return f"{prefix}{random_part}"


def generate_token(
    *,
    private_key: str,
    expires_in: int = 3600,
    scope: str = SYNC_SCOPE,
    nonce_length: int = 16,
) -> str:
    """
    Generate a signed bearer token.

    Args:
        private_key: Shared secret used to sign the token.
        expires_in: Token lifetime in seconds.
        scope: Endpoint family the token is valid for.
        nonce_length: Length of random nonce.

    Returns:
        Signed token string.
    """
    now = int(time.time())

    payload: Dict[str, object] = {
        "iat": now,
        "exp": now + expires_in,
        "nonce": secrets.token_urlsafe(nonce_length),
        "scope": scope,
    }

    payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    payload_b64 = _b64encode(payload_json.encode())
    return f"{payload_b64}.{_b64encode(_sign(private_key, payload_b64))}"


def verify_token(
    *,
    token: str,
    private_key: str,
    scope: str = SYNC_SCOPE,
    leeway: int = 0,
) -> Dict[str, object]:
    """
    Verify token signature, scope and expiration.

    Args:
        token: Token string.
        private_key: Shared secret used to verify the token.
        scope: Scope the token must have been issued for.
        leeway: Allowed clock skew in seconds.

    Returns:
        Decoded payload if valid.

    Raises:
        TokenExpiredError: If token is expired.
        InvalidTokenError: If token is malformed, mis-scoped or the signature mismatches.
    """
    try:
        payload_b64, signature_b64 = token.split(".")
        actual_sig = _b64decode(signature_b64)
    except ValueError:
        raise InvalidTokenError("Invalid token format")

    if not hmac.compare_digest(_sign(private_key, payload_b64), actual_sig):
        raise InvalidTokenError("Signature verification failed")

    try:
        payload = json.loads(_b64decode(payload_b64))
        expires_at = int(payload["exp"])
    except (ValueError, KeyError, TypeError):
        raise InvalidTokenError("Invalid token payload")

    if payload.get("scope") != scope:
        raise InvalidTokenError("Token was not issued for this endpoint")

    if int(time.time()) > expires_at + leeway:
        raise TokenExpiredError("Token has expired")

    return payload


def parse_bearer_token(authorization: Optional[str]) -> str:
    """
    Extract the token from an ``Authorization: Bearer <token>`` header value.

    Raises:
        InvalidTokenError: Header missing or not in Bearer format.
    """
    if not authorization:
        raise InvalidTokenError("Missing authorization token")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise InvalidTokenError("Invalid authorization header format")
    return parts[1]
