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
JWKS component: verification keys and the service that fetches and caches operator key sets.
"""

import time
from collections.abc import Iterator
from typing import Any

import anyio
import httpx
from authlib.jose import JsonWebKey, JsonWebSignature
from authlib.jose.errors import BadSignatureError, DecodeError, JoseError
from authlib.jose.errors import UnsupportedAlgorithmError as JoseUnsupportedAlgorithmError

from coreason_mobile_connect.exceptions import (
    HttpFailureError,
    InvalidKeyError,
    MobileConnectError,
    OversizedResponseError,
    UnsupportedAlgorithmError,
)
from coreason_mobile_connect.transport import json_body, safe_request
from coreason_mobile_connect.utils.logger import logger

SUPPORTED_ALGORITHMS = ("RS256", "RS384", "RS512", "PS256", "PS384", "PS512", "ES256", "ES384", "ES512")


class JWKey:
    """
    A single verification key from an operator's JWKS.

    Attributes:
        kid (str | None): The key id.
        algorithm (str | None): The declared algorithm, if any.
        key_type (str | None): The JWK key type (RSA, EC).
    """

    def __init__(self, jwk: dict[str, Any]) -> None:
        self.jwk = jwk
        self.kid: str | None = jwk.get("kid")
        self.algorithm: str | None = jwk.get("alg")
        self.key_type: str | None = jwk.get("kty")

    def __repr__(self) -> str:
        return f"JWKey(kid={self.kid!r}, alg={self.algorithm!r}, kty={self.key_type!r})"

    def verify(self, token: str, alg: str) -> bool:
        """
        Verifies the signature of a compact JWS with this key.

        Args:
            token: The compact serialized token.
            alg: The algorithm from the token header.

        Returns:
            bool: True if the signature matches.

        Raises:
            UnsupportedAlgorithmError: If `alg` is not an asymmetric algorithm this key set supports.
            InvalidKeyError: If the key cannot be imported or does not fit `alg`.
        """
        if alg not in SUPPORTED_ALGORITHMS:
            raise UnsupportedAlgorithmError(f"Algorithm {alg!r} is not supported")

        try:
            key = JsonWebKey.import_key(self.jwk)
        except (JoseError, ValueError, TypeError, KeyError) as e:
            raise InvalidKeyError(f"Key {self.kid!r} is malformed: {e}") from e

        jws = JsonWebSignature(algorithms=[alg])
        try:
            jws.deserialize_compact(token, key)
        except JoseUnsupportedAlgorithmError as e:
            raise UnsupportedAlgorithmError(f"Algorithm {alg!r} is not supported: {e}") from e
        except (BadSignatureError, DecodeError, JoseError):
            return False
        except (ValueError, TypeError, AttributeError) as e:
            # authlib raises these when the key type does not match the algorithm family
            raise InvalidKeyError(f"Key {self.kid!r} cannot verify {alg}: {e}") from e
        return True


class JWKeySet:
    """
    Ordered collection of verification keys.
    """

    def __init__(self, keys: list[JWKey]) -> None:
        self.keys = keys

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JWKeySet":
        """Builds a key set from a ``{"keys": [...]}`` document, ignoring non-object entries."""
        raw_keys = data.get("keys") or []
        return cls([JWKey(k) for k in raw_keys if isinstance(k, dict)])

    def get_matching(self, kid: str | None, alg: str | None) -> JWKey | None:
        """
        Returns the first key whose id equals `kid` and whose algorithm is undeclared or equal to `alg`.
        """
        return next(
            (k for k in self.keys if k.kid == kid and (not k.algorithm or k.algorithm == alg)),
            None,
        )

    def __iter__(self) -> Iterator[JWKey]:
        return iter(self.keys)

    def __len__(self) -> int:
        return len(self.keys)


class JWKeysetService:
    """
    Fetches and caches operator key sets, one cache entry per JWKS URL.

    Attributes:
        client (httpx.AsyncClient): The async HTTP client used for requests.
        cache_ttl (int): The cache time-to-live in seconds.
    """

    def __init__(self, client: httpx.AsyncClient, cache_ttl: int = 3600, attempts: int = 3) -> None:
        """
        Initialize the JWKeysetService.

        Args:
            client: The async HTTP client to use for requests.
            cache_ttl: Time-to-live for cached key sets in seconds. Defaults to 3600 (1 hour).
            attempts: Number of fetch attempts before giving up.
        """
        self.client = client
        self.cache_ttl = cache_ttl
        self.attempts = attempts
        self._cache: dict[str, tuple[JWKeySet, float]] = {}
        self._lock: anyio.Lock | None = None

    async def _fetch_jwks(self, jwks_url: str) -> JWKeySet:
        """
        Fetches the JWKS from the given URL.

        Retries transport failures with exponential backoff (initial=0.1s, max=1.0s).

        Raises:
            MobileConnectError: If the request fails after retries or the document is not a key set.
        """
        wait_initial = 0.1
        wait_max = 1.0

        for attempt in range(self.attempts):
            try:
                response = await safe_request(self.client, "GET", jwks_url)
                if response.status_code >= 400:
                    raise HttpFailureError(f"JWKS endpoint returned HTTP {response.status_code}")
                data = json_body(response)
                if data is None or not isinstance(data.get("keys"), list):
                    raise MobileConnectError(f"Invalid JWKS document from {jwks_url}")
                return JWKeySet.from_dict(data)
            except HttpFailureError as e:
                if attempt == self.attempts - 1:
                    raise MobileConnectError(f"Failed to fetch JWKS from {jwks_url}: {e}") from e
                await anyio.sleep(min(wait_initial * (2**attempt), wait_max))
            except OversizedResponseError:
                raise

        raise MobileConnectError(f"Failed to fetch JWKS from {jwks_url}")  # pragma: no cover

    async def retrieve_jwks(self, jwks_url: str, force_refresh: bool = False) -> JWKeySet:
        """
        Returns the key set published at `jwks_url`, using the cache if valid.

        Args:
            jwks_url: The JWKS URL from the discovery response.
            force_refresh: If True, bypasses the cache.

        Raises:
            MobileConnectError: If fetching fails.
        """
        if self._lock is None:
            self._lock = anyio.Lock()

        if not force_refresh:
            cached = self._cache.get(jwks_url)
            if cached and (time.time() - cached[1]) < self.cache_ttl:
                return cached[0]

        async with self._lock:
            # Another task may have refreshed while we waited
            cached = self._cache.get(jwks_url)
            if not force_refresh and cached and (time.time() - cached[1]) < self.cache_ttl:
                return cached[0]

            keyset = await self._fetch_jwks(jwks_url)
            self._cache[jwks_url] = (keyset, time.time())
            logger.debug(f"Cached {len(keyset)} keys from {jwks_url}")
            return keyset
