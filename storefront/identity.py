"""
Identity/session collaborator: sign-up, sign-in and current-user lookup.

The storefront is a single-shopper client, so each provider tracks one
current session.
"""
import asyncio
import hashlib
import hmac
import json
import logging
import secrets
import uuid
from typing import Dict, Optional

from storefront.exceptions import IdentityError
from storefront.models import AnonymousSession, AuthenticatedSession, Identity, Session
from storefront.redis_client import RedisClient

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 120_000


def hash_password(password: str, salt: Optional[str] = None) -> str:
    """Return "<salt>$<hex digest>" for storage"""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    salt, _, _ = stored.partition("$")
    return hmac.compare_digest(hash_password(password, salt), stored)


def generate_password() -> str:
    """Random credential for accounts provisioned during checkout"""
    return secrets.token_urlsafe(18)


class IdentityProvider:
    """Account and session operations"""

    async def sign_up(self, email: str, password: str, display_name: str) -> None:
        raise NotImplementedError

    async def sign_in(self, email: str, password: str) -> None:
        raise NotImplementedError

    async def sign_out(self) -> None:
        raise NotImplementedError

    async def current_user(self) -> Optional[Identity]:
        raise NotImplementedError

    async def session(self) -> Session:
        identity = await self.current_user()
        if identity is None:
            return AnonymousSession()
        return AuthenticatedSession(identity=identity)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class InMemoryIdentityProvider(IdentityProvider):
    """Process-local accounts"""

    def __init__(self):
        self.accounts: Dict[str, dict] = {}
        self._current: Optional[Identity] = None

    async def sign_up(self, email: str, password: str, display_name: str) -> None:
        email = _normalize_email(email)
        if not email or not password:
            raise IdentityError("Email and password are required")
        if email in self.accounts:
            raise IdentityError("An account with this email already exists")
        self.accounts[email] = {
            "user_id": str(uuid.uuid4()),
            "display_name": display_name,
            "password": hash_password(password),
        }

    async def sign_in(self, email: str, password: str) -> None:
        email = _normalize_email(email)
        account = self.accounts.get(email)
        if account is None or not verify_password(password, account["password"]):
            raise IdentityError("Invalid email or password")
        self._current = Identity(
            user_id=account["user_id"], email=email, display_name=account["display_name"]
        )

    async def sign_out(self) -> None:
        self._current = None

    async def current_user(self) -> Optional[Identity]:
        return self._current


class RedisIdentityProvider(IdentityProvider):
    """Accounts stored in a Redis hash keyed by email"""

    def __init__(self, redis_client: RedisClient, namespace: str = "ecfresh"):
        self.redis = redis_client
        self.accounts_key = f"{namespace}:accounts"
        self._current: Optional[Identity] = None

    async def sign_up(self, email: str, password: str, display_name: str) -> None:
        email = _normalize_email(email)
        if not email or not password:
            raise IdentityError("Email and password are required")
        existing = await asyncio.to_thread(self.redis.hget, self.accounts_key, email)
        if existing is not None:
            raise IdentityError("An account with this email already exists")
        account = {
            "user_id": str(uuid.uuid4()),
            "display_name": display_name,
            "password": hash_password(password),
        }
        await asyncio.to_thread(self.redis.hset, self.accounts_key, email, json.dumps(account))
        logger.info(f"Account created for user {account['user_id']}")

    async def sign_in(self, email: str, password: str) -> None:
        email = _normalize_email(email)
        raw = await asyncio.to_thread(self.redis.hget, self.accounts_key, email)
        if raw is None:
            raise IdentityError("Invalid email or password")
        account = json.loads(raw)
        if not verify_password(password, account["password"]):
            raise IdentityError("Invalid email or password")
        self._current = Identity(
            user_id=account["user_id"], email=email, display_name=account.get("display_name", "")
        )

    async def sign_out(self) -> None:
        self._current = None

    async def current_user(self) -> Optional[Identity]:
        return self._current
