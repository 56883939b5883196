"""Short-lived correlation entries for the identity-linking handshake.

Entries are written with a TTL and read with ``take_once``, which removes the
entry in the same step so a ``state`` value can never be consumed twice.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from marketplace_entitlements.core.config import settings
from marketplace_entitlements.core.errors import TransientUpstreamError
from marketplace_entitlements.core.ledger import parse_timestamp
from marketplace_entitlements.core.security.crypto import EncryptionError, SecurityCipher
from marketplace_entitlements.core.security.dependencies import get_security_cipher

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CorrelationEntry:
    marketplace_token: str
    created_at: datetime

    def to_payload(self) -> dict[str, object]:
        return {
            "marketplace_token": self.marketplace_token,
            "timestamp": self.created_at.astimezone(timezone.utc).isoformat(),
        }

    @classmethod
    def from_payload(cls, payload: dict) -> CorrelationEntry | None:
        token = payload.get("marketplace_token")
        created_at = parse_timestamp(payload.get("timestamp"))
        if not token or created_at is None:
            return None
        return cls(marketplace_token=str(token), created_at=created_at)


class CorrelationStore(Protocol):
    async def put(self, key: str, entry: CorrelationEntry, ttl_seconds: int) -> None: ...

    async def take_once(self, key: str) -> CorrelationEntry | None: ...


class RedisCorrelationStore:
    def __init__(
        self,
        redis_url: str | None = None,
        cipher: SecurityCipher | None = None,
        prefix: str = "landing:state:",
    ) -> None:
        self.redis_url = redis_url or settings.redis_url
        self._cipher = cipher
        self.prefix = prefix

    @property
    def cipher(self) -> SecurityCipher:
        if self._cipher is None:
            self._cipher = get_security_cipher()
        return self._cipher

    async def put(self, key: str, entry: CorrelationEntry, ttl_seconds: int) -> None:
        sealed = self.cipher.seal(entry.to_payload())
        redis_client = redis.from_url(self.redis_url, decode_responses=True)
        try:
            await redis_client.set(f"{self.prefix}{key}", sealed, ex=ttl_seconds)
        except RedisError as exc:
            raise TransientUpstreamError("Correlation store is unavailable") from exc
        finally:
            await redis_client.aclose()

    async def take_once(self, key: str) -> CorrelationEntry | None:
        redis_client = redis.from_url(self.redis_url, decode_responses=True)
        try:
            sealed = await redis_client.getdel(f"{self.prefix}{key}")
        except RedisError as exc:
            raise TransientUpstreamError("Correlation store is unavailable") from exc
        finally:
            await redis_client.aclose()

        if sealed is None:
            return None
        try:
            payload = self.cipher.unseal(sealed)
        except EncryptionError:
            logger.warning("Discarding unreadable correlation entry")
            return None
        return CorrelationEntry.from_payload(payload)


class InMemoryCorrelationStore:
    """Process-local store for development and single-instance deployments."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[float, CorrelationEntry]] = {}

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]

    async def put(self, key: str, entry: CorrelationEntry, ttl_seconds: int) -> None:
        now = time.monotonic()
        self._purge_expired(now)
        self._entries[key] = (now + ttl_seconds, entry)

    async def take_once(self, key: str) -> CorrelationEntry | None:
        item = self._entries.pop(key, None)
        if item is None:
            return None
        expires_at, entry = item
        if expires_at <= time.monotonic():
            return None
        return entry

    def __len__(self) -> int:
        return len(self._entries)


_memory_store = InMemoryCorrelationStore()


def get_correlation_store() -> CorrelationStore:
    if settings.correlation_backend.strip().lower() == "memory":
        return _memory_store
    return RedisCorrelationStore()
