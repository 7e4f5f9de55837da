"""
Token Codec
===========
Mints the compact HS256 credential a virtual user starts with and pulls
server-rotated replacements out of response headers.

The driver never verifies tokens. It only produces a plausible first token
in the same shape the cart server issues, so the very first cart call can be
made before any server interaction.
"""

import base64
import hashlib
import hmac
import json
import re
import time
from typing import Any, Callable, List, Mapping, Optional

DEFAULT_SECRET = "your-super-secret-key-12345"
DEFAULT_COOKIE_NAME = "jwt_token"
DEFAULT_TOKEN_HEADER = "X-Jwt-Token"

HEADER = {"alg": "HS256", "typ": "JWT"}


def b64url(data: bytes) -> str:
    """Base64url without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _encode_segment(obj: Any) -> str:
    # Compact separators keep the bytes identical to what the server signs
    return b64url(json.dumps(obj, separators=(",", ":")).encode("utf-8"))


def sign(signing_input: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), signing_input.encode("ascii"), hashlib.sha256).digest()
    return b64url(digest)


class TokenCodec:
    """
    Builds `header.payload.signature` credentials.

    `clock` returns epoch seconds and exists so expiry can be pinned in tests.
    """

    def __init__(self, secret: str = DEFAULT_SECRET, clock: Callable[[], float] = time.time):
        self.secret = secret
        self.clock = clock

    def mint(self, subject: str, cart_snapshot: Optional[List[Any]] = None, ttl_seconds: int = 3600) -> str:
        payload = {
            "user_id": subject,
            "cart": list(cart_snapshot) if cart_snapshot else [],
            "exp": int(self.clock()) + ttl_seconds,
        }
        signing_input = f"{_encode_segment(HEADER)}.{_encode_segment(payload)}"
        return f"{signing_input}.{sign(signing_input, self.secret)}"


def _header_values(headers: Mapping[str, str], name: str) -> List[str]:
    # aiohttp hands us a CIMultiDictProxy; Set-Cookie may repeat
    getall = getattr(headers, "getall", None)
    if getall is not None:
        return list(getall(name, []))
    value = headers.get(name)
    return [value] if value else []


def extract_rotated(
    headers: Mapping[str, str],
    cookie_name: str = DEFAULT_COOKIE_NAME,
    header_name: str = DEFAULT_TOKEN_HEADER,
) -> Optional[str]:
    """
    Return the replacement credential carried by a response, if any.

    A `Set-Cookie` assignment of `cookie_name` wins over the direct token
    header. The cookie value runs up to the first `;` or the end of the
    header.
    """
    pattern = re.compile(rf"(?:^|[;,\s]){re.escape(cookie_name)}=([^;]+)")
    for set_cookie in _header_values(headers, "Set-Cookie"):
        match = pattern.search(set_cookie)
        if match:
            return match.group(1).strip()

    for value in _header_values(headers, header_name):
        if value:
            return value.strip()
    return None
