# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

"""
Session cache: maps an opaque sdk_session id to the discovery response of an ongoing flow.
"""

import secrets
import time
from collections.abc import Callable
from typing import Any, Protocol

from coreason_mobile_connect.models import DiscoveryResponse
from coreason_mobile_connect.utils.logger import logger


class CacheProtocol(Protocol):
    """Protocol for the injected cache capability (in-memory, Redis, ...)."""

    async def add(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Stores `value` under `key`. `ttl` is in seconds; None keeps the store's default policy."""
        ...

    async def get(self, key: str) -> Any | None:
        """Returns the value stored under `key`, or None if missing or expired."""
        ...


class MemoryCache:
    """
    In-memory implementation of CacheProtocol.
    Uses a dictionary with lazy cleanup. Not suitable for distributed systems.
    """

    def __init__(self) -> None:
        self._cache: dict[str, tuple[Any, float | None]] = {}

    def _evict_expired(self, now: float) -> None:
        expired_keys = [k for k, (_, expires_at) in self._cache.items() if expires_at is not None and expires_at <= now]
        for k in expired_keys:
            del self._cache[k]

    async def add(self, key: str, value: Any, ttl: int | None = None) -> None:
        now = time.time()
        self._evict_expired(now)
        self._cache[key] = (value, now + ttl if ttl is not None else None)

    async def get(self, key: str) -> Any | None:
        self._evict_expired(time.time())
        entry = self._cache.get(key)
        return entry[0] if entry else None

    def __len__(self) -> int:
        return len(self._cache)


def generate_session_id() -> str:
    """Returns a new 128-bit random session id, hex encoded."""
    return secrets.token_hex(16)


class SessionCacheAdapter:
    """
    Stores discovery responses under freshly generated sdk_session ids.

    Caching is engaged only when it is enabled AND a cache is present; the decision is
    taken once at construction.

    Attributes:
        cache (CacheProtocol | None): The underlying cache capability.
        ttl (int | None): Lifetime passed to the cache for each entry.
    """

    def __init__(
        self,
        cache: CacheProtocol | None,
        enabled: bool,
        ttl: int | None = None,
        id_factory: Callable[[], str] = generate_session_id,
    ) -> None:
        """
        Initialize the SessionCacheAdapter.

        Args:
            cache: The cache capability; None means session caching is unavailable.
            enabled: Whether the host configuration enables session-id caching.
            ttl: Entry lifetime in seconds, forwarded to the cache.
            id_factory: Session id generator. Tests can swap in a deterministic one.
        """
        self.cache = cache
        self.ttl = ttl
        self._id_factory = id_factory
        self._enabled = enabled and cache is not None

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    async def put(self, discovery_response: DiscoveryResponse) -> str:
        """
        Stores a copy of `discovery_response` under a new session id.

        Returns:
            str: The new session id.

        Raises:
            RuntimeError: If caching is not enabled.
        """
        if not self._enabled or self.cache is None:
            raise RuntimeError("Session caching is not enabled")

        session_id = self._id_factory()
        await self.cache.add(session_id, discovery_response.model_copy(deep=True), self.ttl)
        logger.debug("Stored discovery response for new sdk_session")
        return session_id

    async def get(self, session_id: str | None) -> DiscoveryResponse | None:
        """
        Looks up the discovery response stored under `session_id`.

        Returns:
            DiscoveryResponse | None: A copy of the stored response; None when caching is
            disabled, the id is empty, or there is no entry.
        """
        if not self._enabled or self.cache is None or not session_id:
            return None

        cached = await self.cache.get(session_id)
        if not isinstance(cached, DiscoveryResponse):
            logger.debug("No discovery response cached for sdk_session")
            return None
        return cached.model_copy(deep=True)
