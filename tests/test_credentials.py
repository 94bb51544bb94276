import threading
import time
import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from deduper.errors import AuthenticationError
from deduper.services.credentials import (
    DEFAULT_PERMISSIONS,
    CredentialManager,
    InstallationTokenAuth,
    mint_app_jwt,
)


def _generate_key_pair():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    return private_pem, public_pem


PRIVATE_KEY, PUBLIC_KEY = _generate_key_pair()
NOW = datetime(2024, 3, 1, 12, 0, 0)


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class FakeExchange:
    """Hands out numbered tokens that expire an hour after the clock's current time."""

    def __init__(self, clock, delay=0.0):
        self.clock = clock
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, app_jwt, organization, permissions):
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.calls.append((app_jwt, organization, permissions))
            return f"token-{len(self.calls)}", self.clock() + timedelta(hours=1)


class MintAppJwtTests(unittest.TestCase):
    def test_claims(self):
        token = mint_app_jwt("12345", PRIVATE_KEY, now=1_700_000_000)
        claims = jwt.decode(token, PUBLIC_KEY, algorithms=["RS256"], options={"verify_exp": False})

        self.assertEqual(claims["iss"], "12345")
        self.assertEqual(claims["iat"], 1_700_000_000 - 60)
        self.assertEqual(claims["exp"], 1_700_000_000 + 540)

    def test_missing_app_id(self):
        with self.assertRaises(AuthenticationError):
            mint_app_jwt("", PRIVATE_KEY)


class CredentialManagerTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock(NOW)
        self.exchange = FakeExchange(self.clock)
        self.manager = CredentialManager(
            "12345", PRIVATE_KEY, "minecraft-dev", token_exchange=self.exchange, clock=self.clock
        )

    def test_token_is_cached(self):
        self.assertEqual(self.manager.get_token(), "token-1")
        self.clock.now = NOW + timedelta(minutes=30)
        self.assertEqual(self.manager.get_token(), "token-1")
        self.assertEqual(len(self.exchange.calls), 1)

    def test_exchange_receives_scoped_request(self):
        self.manager.get_token()
        app_jwt, organization, permissions = self.exchange.calls[0]

        self.assertEqual(organization, "minecraft-dev")
        self.assertEqual(permissions, DEFAULT_PERMISSIONS)
        claims = jwt.decode(app_jwt, PUBLIC_KEY, algorithms=["RS256"], options={"verify_exp": False})
        self.assertEqual(claims["iss"], "12345")

    def test_refreshes_five_minutes_before_expiry(self):
        self.manager.get_token()

        self.clock.now = NOW + timedelta(minutes=54, seconds=59)
        self.assertEqual(self.manager.get_token(), "token-1")

        self.clock.now = NOW + timedelta(minutes=55)
        self.assertEqual(self.manager.get_token(), "token-2")
        self.assertEqual(len(self.exchange.calls), 2)

    def test_concurrent_callers_share_one_refresh(self):
        self.exchange.delay = 0.05

        with ThreadPoolExecutor(max_workers=8) as pool:
            tokens = list(pool.map(lambda _: self.manager.get_token(), range(8)))

        self.assertEqual(set(tokens), {"token-1"})
        self.assertEqual(len(self.exchange.calls), 1)

    def test_authorization_header(self):
        self.assertEqual(self.manager.get_authorization_header(), "token token-1")

    def test_failed_exchange_raises_authentication_error(self):
        def failing(app_jwt, organization, permissions):
            raise RuntimeError("installation not found")

        manager = CredentialManager("12345", PRIVATE_KEY, "minecraft-dev", token_exchange=failing, clock=self.clock)

        with self.assertRaises(AuthenticationError):
            manager.get_token()

    def test_exchange_without_expiry_raises_authentication_error(self):
        def no_expiry(app_jwt, organization, permissions):
            return "ghs_abc", None

        manager = CredentialManager("12345", PRIVATE_KEY, "minecraft-dev", token_exchange=no_expiry, clock=self.clock)

        with self.assertRaises(AuthenticationError):
            manager.get_token()

    def test_failed_refresh_is_retried_on_next_call(self):
        outcomes = [RuntimeError("boom"), ("fresh", NOW + timedelta(hours=1))]

        def flaky(app_jwt, organization, permissions):
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        manager = CredentialManager("12345", PRIVATE_KEY, "minecraft-dev", token_exchange=flaky, clock=self.clock)

        with self.assertRaises(AuthenticationError):
            manager.get_token()
        self.assertEqual(manager.get_token(), "fresh")


class InstallationTokenAuthTests(unittest.TestCase):
    def test_uses_current_token(self):
        clock = FakeClock(NOW)
        manager = CredentialManager(
            "12345", PRIVATE_KEY, "minecraft-dev", token_exchange=FakeExchange(clock), clock=clock
        )
        auth = InstallationTokenAuth(manager)

        self.assertEqual(auth.token_type, "token")
        self.assertEqual(auth.token, "token-1")


if __name__ == "__main__":
    unittest.main()
