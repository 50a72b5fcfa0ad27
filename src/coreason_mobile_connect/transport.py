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
HTTP helpers: an SSRF-safe transport and a size-limited request wrapper.

Operator URLs come from discovery payloads and provider metadata, i.e. from remote
documents, so every request goes through DNS pinning and a response size cap.
"""

import ipaddress
import socket
from typing import Any

import anyio
import httpx

from coreason_mobile_connect.exceptions import HttpFailureError, OversizedResponseError, SecurityError
from coreason_mobile_connect.utils.logger import logger

MAX_RESPONSE_BYTES = 1_000_000

# Dropped when re-wrapping a streamed body, which httpx has already decoded
_STREAM_HEADERS = {"content-encoding", "content-length", "transfer-encoding"}


class SafeHTTPTransport(httpx.AsyncHTTPTransport):
    """
    A secure HTTP transport that enforces DNS pinning to prevent SSRF/DNS Rebinding attacks.

    It resolves the hostname, rejects private, loopback, link-local, reserved and multicast
    addresses, and connects to the first public address while preserving the Host header
    and SNI for TLS verification.
    """

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        hostname = request.url.host

        try:
            ip_obj = ipaddress.ip_address(hostname)
        except ValueError:
            ip_obj = None

        if ip_obj is not None:
            self._validate_ip(ip_obj, hostname)
            return await super().handle_async_request(request)

        try:
            addr_infos = await anyio.to_thread.run_sync(socket.getaddrinfo, hostname, None, 0, socket.SOCK_STREAM)
        except socket.gaierror as e:
            logger.error(f"DNS resolution failed for {hostname}: {e}")
            raise SecurityError(f"DNS resolution failed for {hostname}") from e

        target_ip: str | None = None
        for _, _, _, _, sockaddr in addr_infos:
            try:
                candidate = ipaddress.ip_address(sockaddr[0])
                self._validate_ip(candidate, hostname)
            except (SecurityError, ValueError):
                continue
            target_ip = str(candidate)
            break

        if not target_ip:
            logger.error(f"Security violation: No valid public IP found for {hostname}")
            raise SecurityError(f"Security violation: No valid public IP found for {hostname}")

        request.extensions["sni_hostname"] = hostname
        if "Host" not in request.headers:
            request.headers["Host"] = request.url.netloc.decode("ascii")
        request.url = request.url.copy_with(host=target_ip)

        logger.debug(f"DNS Pinned: {hostname} -> {target_ip}")
        return await super().handle_async_request(request)

    def _validate_ip(self, ip_obj: Any, hostname: str) -> None:
        if (
            ip_obj.is_private
            or ip_obj.is_loopback
            or ip_obj.is_link_local
            or ip_obj.is_reserved
            or ip_obj.is_multicast
        ):
            logger.warning(f"Security violation: Blocked access to {hostname} ({ip_obj})")
            raise SecurityError(f"Access to {hostname} ({ip_obj}) is blocked")


async def safe_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    max_bytes: int = MAX_RESPONSE_BYTES,
    **kwargs: Any,
) -> httpx.Response:
    """
    Sends a request and reads the body with a size cap.

    Unlike `raise_for_status`, error statuses are returned: operator endpoints put OAuth
    error payloads in 4xx bodies.

    Args:
        client: The async HTTP client.
        method: HTTP method.
        url: Target URL.
        max_bytes: Maximum accepted body size.
        **kwargs: Forwarded to `client.stream` (params, data, headers, auth, follow_redirects...).

    Returns:
        httpx.Response: A fully read response.

    Raises:
        OversizedResponseError: If the body exceeds `max_bytes`.
        HttpFailureError: If the request fails at the transport level.
    """
    try:
        async with client.stream(method, url, **kwargs) as response:
            content_length = response.headers.get("Content-Length")
            if content_length:
                try:
                    if int(content_length) > max_bytes:
                        raise OversizedResponseError(f"Response from {url} too large")
                except ValueError:
                    pass

            content = bytearray()
            async for chunk in response.aiter_bytes():
                content.extend(chunk)
                if len(content) > max_bytes:
                    raise OversizedResponseError(f"Response from {url} too large")

            headers = [(k, v) for k, v in response.headers.multi_items() if k.lower() not in _STREAM_HEADERS]
            return httpx.Response(
                response.status_code,
                headers=headers,
                content=bytes(content),
                request=response.request,
            )
    except httpx.HTTPError as e:
        logger.error(f"{method} {url} failed: {e}")
        raise HttpFailureError(f"{method} {url} failed: {e}") from e


def json_body(response: httpx.Response) -> dict[str, Any] | None:
    """Parses a response body as a JSON object; None if it is empty or not an object."""
    if not response.content:
        return None
    try:
        data = response.json()
    except ValueError:
        logger.warning(f"Non-JSON body received from {response.request.url} (HTTP {response.status_code})")
        return None
    return data if isinstance(data, dict) else None
