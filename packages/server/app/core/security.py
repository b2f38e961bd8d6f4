"""
Credential hashing and random credential generation.
"""

from __future__ import annotations

import asyncio
import secrets
import string
from functools import lru_cache

import bcrypt

from app.core.config import get_settings

API_KEY_PREFIX = "tk_"
API_KEY_RANDOM_LENGTH = 32
_ALPHANUMERIC = string.ascii_letters + string.digits

# bcrypt only looks at the first 72 bytes of its input
_BCRYPT_MAX_BYTES = 72


class CredentialHasher:
    """Salted bcrypt hashing for passwords and API key secrets.

    The ``hash``/``verify`` coroutines run bcrypt in a worker thread so the
    event loop keeps serving other requests.
    """

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    @staticmethod
    def _encode(secret: str) -> bytes:
        return secret.encode()[:_BCRYPT_MAX_BYTES]

    def hash_sync(self, secret: str) -> str:
        return bcrypt.hashpw(self._encode(secret), bcrypt.gensalt(rounds=self.rounds)).decode()

    def verify_sync(self, secret: str, digest: str) -> bool:
        try:
            return bcrypt.checkpw(self._encode(secret), digest.encode())
        except ValueError:
            # malformed digest
            return False

    async def hash(self, secret: str) -> str:
        return await asyncio.to_thread(self.hash_sync, secret)

    async def verify(self, secret: str, digest: str) -> bool:
        return await asyncio.to_thread(self.verify_sync, secret, digest)


@lru_cache
def get_hasher() -> CredentialHasher:
    return CredentialHasher(rounds=get_settings().bcrypt_rounds)


def generate_api_key() -> str:
    """``tk_`` followed by 32 random alphanumerics."""
    random_part = "".join(secrets.choice(_ALPHANUMERIC) for _ in range(API_KEY_RANDOM_LENGTH))
    return f"{API_KEY_PREFIX}{random_part}"


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(32)
