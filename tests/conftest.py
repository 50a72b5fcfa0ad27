# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

import socket
from typing import Any, Generator
from unittest.mock import MagicMock, patch

import pytest
from pydantic import SecretStr

from coreason_mobile_connect.config import MobileConnectConfig


@pytest.fixture(autouse=True)
def mock_dns_resolution() -> Generator[MagicMock, None, None]:
    """
    Globally patches socket.getaddrinfo to return a safe public IP by default.
    This keeps SafeHTTPTransport from resolving the dummy operator domains used in tests
    (e.g., operator.example.com).

    Tests that need to verify SSRF logic should explicitly patch socket.getaddrinfo again
    or configure this mock's return value.
    """
    # Default safe response: 8.8.8.8 (Google DNS)
    safe_response = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("8.8.8.8", 443))]

    with patch("socket.getaddrinfo", return_value=safe_response) as mock:
        yield mock


@pytest.fixture
def config() -> MobileConnectConfig:
    return MobileConnectConfig(
        client_id="test-client",
        client_secret=SecretStr("test-secret"),
        discovery_url="https://discovery.example.com/v2/discovery",
        redirect_url="https://app.example.com/callback",
        pii_salt=SecretStr("test-salt"),
    )


@pytest.fixture
def discovery_payload() -> dict[str, Any]:
    """A discovery response body for an identified operator."""
    return {
        "ttl": 1900000000,
        "subscriber_id": "enc-subscriber-id",
        "response": {
            "serving_operator": "Example Operator",
            "country": "UK",
            "currency": "GBP",
            "client_id": "operator-client-id",
            "client_secret": "operator-client-secret",
            "client_name": "Example App",
            "apis": {
                "operatorid": {
                    "link": [
                        {"rel": "authorization", "href": "https://operator.example.com/authorize"},
                        {"rel": "token", "href": "https://operator.example.com/token"},
                        {"rel": "userinfo", "href": "https://operator.example.com/userinfo"},
                        {"rel": "premiuminfo", "href": "https://operator.example.com/premiuminfo"},
                        {"rel": "jwks", "href": "https://operator.example.com/jwks"},
                        {"rel": "tokenrevoke", "href": "https://operator.example.com/revoke"},
                        {
                            "rel": "openid-configuration",
                            "href": "https://operator.example.com/.well-known/openid-configuration",
                        },
                        {"rel": "scope", "href": "https://operator.example.com/scope"},
                    ]
                }
            },
        },
    }


@pytest.fixture
def operator_selection_payload() -> dict[str, Any]:
    """A discovery response body asking the user to pick their operator."""
    return {
        "links": [
            {"rel": "operatorSelection", "href": "https://discovery.example.com/select?session=abc"},
        ]
    }
