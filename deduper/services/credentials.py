"""GitHub App installation credentials"""

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

import jwt
from github import Auth

from deduper.errors import AuthenticationError
from deduper.services.github_client import DEFAULT_API_URL, mint_installation_token

logger = logging.getLogger(__name__)

# Only what closing duplicates needs.
DEFAULT_PERMISSIONS = {"issues": "write"}
REFRESH_MARGIN = timedelta(minutes=5)

TokenExchange = Callable[[str, str, Dict[str, str]], Tuple[str, datetime]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def mint_app_jwt(app_id: str, private_key: str, now: Optional[float] = None) -> str:
    """Generate a short-lived RS256 JWT for the GitHub App.

    GitHub requires:
    - iat: issued at (max 60s in the past)
    - exp: expiration (max 10 minutes from iat)
    - iss: GitHub App ID
    """
    if not app_id:
        raise AuthenticationError("GitHub App ID is not configured")
    issued = int(now if now is not None else time.time())
    payload = {
        "iat": issued - 60,  # allow for clock skew
        "exp": issued + (9 * 60),
        "iss": str(app_id),
    }
    return jwt.encode(payload, private_key, algorithm="RS256")


def read_private_key(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


class CredentialManager:
    """Caches one scoped installation token and refreshes it shortly before it expires.

    Safe to call from many threads; at most one refresh runs at a time and
    callers waiting on it reuse its result.
    """

    def __init__(
        self,
        app_id: str,
        private_key: str,
        organization: str,
        permissions: Optional[Dict[str, str]] = None,
        token_exchange: Optional[TokenExchange] = None,
        clock: Callable[[], datetime] = _utcnow,
        base_url: str = DEFAULT_API_URL,
    ):
        self.app_id = app_id
        self.organization = organization
        self.permissions = dict(permissions or DEFAULT_PERMISSIONS)
        self._private_key = private_key
        self._clock = clock
        self._exchange = token_exchange or (
            lambda app_jwt, org, perms: mint_installation_token(app_jwt, org, perms, base_url=base_url)
        )

        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._valid_until: Optional[datetime] = None

    def get_token(self) -> str:
        with self._lock:
            if self._token is None or self._valid_until is None or self._clock() >= self._valid_until:
                self._refresh()
            return self._token

    def get_authorization_header(self) -> str:
        return f"token {self.get_token()}"

    def _refresh(self):
        logger.info(f"Refreshing installation token for {self.organization}")
        try:
            app_jwt = mint_app_jwt(self.app_id, self._private_key)
            token, expires_at = self._exchange(app_jwt, self.organization, self.permissions)
            if not token or expires_at is None:
                raise AuthenticationError("Installation token response has no token or expiry")
            valid_until = expires_at - REFRESH_MARGIN
        except AuthenticationError:
            raise
        except Exception as e:
            logger.error(f"Failed to refresh installation token: {e}")
            raise AuthenticationError(f"Failed to refresh installation token: {e}") from e

        self._token = token
        self._valid_until = valid_until
        logger.info(f"Installation token valid until {expires_at.isoformat()}")


class InstallationTokenAuth(Auth.Auth):
    """PyGithub authentication backed by a :class:`CredentialManager`"""

    def __init__(self, credentials: CredentialManager):
        self.credentials = credentials

    @property
    def token_type(self) -> str:
        return "token"

    @property
    def token(self) -> str:
        return self.credentials.get_token()
