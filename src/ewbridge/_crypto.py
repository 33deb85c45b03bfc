"""Internal signing helpers for eWeLink API authentication."""

from __future__ import annotations

import base64
import secrets
import string
import time

from Crypto.Hash import HMAC, SHA256

_NONCE_ALPHABET = string.ascii_letters + string.digits


def sign(secret: str, message: bytes | str) -> str:
    """Base64 HMAC-SHA256 of *message* keyed with the app secret."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    mac = HMAC.new(secret.encode("utf-8"), message, digestmod=SHA256)
    return base64.b64encode(mac.digest()).decode("ascii")


def sign_header(secret: str, body: bytes | str) -> str:
    """``Authorization`` header value for a signed (token-less) request."""
    return f"Sign {sign(secret, body)}"


def make_nonce(length: int = 8) -> str:
    """Random alphanumeric nonce for the OAuth redirect."""
    return "".join(secrets.choice(_NONCE_ALPHABET) for _ in range(length))


def make_seq() -> str:
    """Millisecond timestamp used as the OAuth ``seq`` parameter."""
    return str(int(time.time() * 1000))
