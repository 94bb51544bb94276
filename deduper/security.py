"""Security-related helpers.

Provides verification of GitHub webhook deliveries (``X-Hub-Signature-256``).
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import threading
from typing import Callable, Union

from deduper.errors import AuthenticationError

SIGNATURE_HEADER = "X-Hub-Signature-256"
SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: bytes, body: bytes) -> bytes:
    return hmac.new(secret, body, hashlib.sha256).digest()


def _parse_signature_header(header_value: str | None) -> bytes:
    """Decode the hex digest of a ``sha256=<hex>`` header."""
    if not header_value:
        raise AuthenticationError(f"No {SIGNATURE_HEADER} header")

    value = header_value.strip()
    if value.startswith(SIGNATURE_PREFIX):
        value = value[len(SIGNATURE_PREFIX):]

    try:
        return binascii.unhexlify(value)
    except (binascii.Error, ValueError):
        raise AuthenticationError("Malformed signature") from None


class WebhookAuthenticator:
    """Verify that webhook payloads were signed with the shared secret.

    The secret may be given directly or as a callable; it is resolved on first
    use and cached for the lifetime of the authenticator.
    """

    def __init__(self, secret: Union[str, bytes, Callable[[], Union[str, bytes]]]):
        self._secret_source = secret
        self._secret: bytes | None = None
        self._lock = threading.Lock()

    def _get_secret(self) -> bytes:
        with self._lock:
            if self._secret is None:
                secret = self._secret_source() if callable(self._secret_source) else self._secret_source
                if not secret:
                    raise AuthenticationError("Webhook secret is not configured")
                self._secret = secret if isinstance(secret, bytes) else secret.encode("utf-8")
            return self._secret

    def verify(self, raw_body: bytes, signature_header: str | None, encoding: str = "utf-8") -> str:
        """Return the body as text if the signature matches, raise AuthenticationError otherwise."""
        expected = _parse_signature_header(signature_header)
        actual = compute_signature(self._get_secret(), raw_body)

        if not hmac.compare_digest(expected, actual):
            raise AuthenticationError("Signatures do not match")

        return raw_body.decode(encoding)
