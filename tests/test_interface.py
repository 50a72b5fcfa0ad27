# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

import re
import time
from typing import Any
from unittest.mock import AsyncMock, Mock, call
from urllib.parse import parse_qs

import anyio
import httpx
import pytest
from authlib.jose import JsonWebKey, jwt

from coreason_mobile_connect.config import MobileConnectConfig
from coreason_mobile_connect.exceptions import AuthenticationCancelledError, MobileConnectError
from coreason_mobile_connect.identity import UserInfoData
from coreason_mobile_connect.interface import MobileConnectInterface
from coreason_mobile_connect.jwks import JWKeySet, JWKeysetService
from coreason_mobile_connect.models import (
    DiscoveryResponse,
    MobileConnectStatus,
    ResponseType,
    TokenValidationResult,
)
from coreason_mobile_connect.session_cache import MemoryCache

ISSUER = "https://operator.example.com"
REDIRECT_URL = "https://app.example.com/callback"
OPERATOR_CLIENT_ID = "operator-client-id"
NONCE = "expected-nonce"
SESSION_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


@pytest.fixture(scope="module")
def signing_key() -> Any:
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


class OperatorStub:
    """Plays the discovery service and one operator behind an httpx.MockTransport."""

    def __init__(self, key: Any, discovery_payload: dict[str, Any]) -> None:
        self.key = key
        self.discovery_payload = discovery_payload
        self.metadata: dict[str, Any] | None = {"issuer": ISSUER, "mc_version": ["mc_v1.1", "mc_v1.2"]}
        self.requests: list[httpx.Request] = []
        self.nonce = NONCE
        self.discovery_unreachable = False
        self.authorize_pending = False
        self.token_error: dict[str, Any] | None = None
        self.token_body: dict[str, Any] | None = None
        self.userinfo_status = 200
        self.revoke_status = 200

    def id_token(self, **overrides: Any) -> str:
        now = int(time.time())
        claims = {
            "iss": ISSUER,
            "sub": "pcr-123",
            "aud": OPERATOR_CLIENT_ID,
            "azp": OPERATOR_CLIENT_ID,
            "exp": now + 3600,
            "iat": now,
            "auth_time": now,
            "nonce": self.nonce,
        }
        claims.update(overrides)
        header = {"alg": "RS256", "kid": self.key.as_dict()["kid"]}
        token: bytes = jwt.encode(header, claims, self.key)
        return token.decode("utf-8")

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "discovery.example.com":
            if self.discovery_unreachable:
                raise httpx.ConnectError("unreachable", request=request)
            return httpx.Response(200, json=self.discovery_payload)

        if path == "/.well-known/openid-configuration":
            if self.metadata is None:
                return httpx.Response(404)
            return httpx.Response(200, json=self.metadata)

        if path == "/authorize":
            if self.authorize_pending:
                return httpx.Response(200, text="waiting for the user")
            self.nonce = request.url.params["nonce"]
            state = request.url.params["state"]
            return httpx.Response(302, headers={"Location": f"{REDIRECT_URL}?code=auth-code&state={state}"})

        if path == "/token":
            if self.token_error is not None:
                return httpx.Response(400, json=self.token_error)
            if self.token_body is not None:
                return httpx.Response(200, json=self.token_body)
            form = parse_qs(request.content.decode())
            if form["grant_type"] == ["refresh_token"]:
                return httpx.Response(200, json={"access_token": "refreshed-access", "expires_in": 3600})
            return httpx.Response(
                200,
                json={
                    "access_token": "access-123",
                    "token_type": "Bearer",
                    "refresh_token": "refresh-123",
                    "expires_in": 3600,
                    "id_token": self.id_token(),
                },
            )

        if path == "/jwks":
            return httpx.Response(200, json={"keys": [self.key.as_dict(is_private=False)]})

        if path == "/userinfo":
            if self.userinfo_status >= 400:
                return httpx.Response(
                    self.userinfo_status, headers={"WWW-Authenticate": 'Bearer error="invalid_token"'}
                )
            return httpx.Response(200, json={"sub": "pcr-123", "phone_number": "+447700900000"})

        if path == "/premiuminfo":
            return httpx.Response(200, json={"sub": "pcr-123", "email": "user@example.com"})

        if path == "/revoke":
            if self.revoke_status >= 400:
                return httpx.Response(self.revoke_status, json={"error": "unsupported_token_type"})
            return httpx.Response(self.revoke_status)

        return httpx.Response(404)


@pytest.fixture
def operator(signing_key: Any, discovery_payload: dict[str, Any]) -> OperatorStub:
    return OperatorStub(signing_key, discovery_payload)


def make_interface(
    config: MobileConnectConfig, operator: OperatorStub, cache: MemoryCache | None = None, **kwargs: Any
) -> MobileConnectInterface:
    client = httpx.AsyncClient(transport=httpx.MockTransport(operator))
    return MobileConnectInterface(config, cache=cache, client=client, **kwargs)


async def discover(mobile_connect: MobileConnectInterface) -> DiscoveryResponse:
    status = await mobile_connect.attempt_discovery(msisdn="447700900000")
    assert status.response_type is ResponseType.START_AUTHENTICATION
    assert status.discovery_response is not None
    return status.discovery_response


def redirect(code: str = "auth-code", state: str = "the-state") -> str:
    return f"{REDIRECT_URL}?code={code}&state={state}"


class TestAttemptDiscovery:
    @pytest.mark.asyncio
    async def test_identified_operator_is_cached(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        cache = MemoryCache()
        mobile_connect = make_interface(config, operator, cache)

        status = await mobile_connect.attempt_discovery(msisdn="+44 7700 900000")

        assert status.response_type is ResponseType.START_AUTHENTICATION
        assert status.sdk_session is not None
        assert SESSION_ID_PATTERN.match(status.sdk_session)
        assert len(cache) == 1
        assert status.discovery_response is not None
        assert status.discovery_response.provider_version == "mc_v1.2"

        form = parse_qs(operator.requests[0].content.decode())
        assert form["MSISDN"] == ["447700900000"]

    @pytest.mark.asyncio
    async def test_no_cache_means_no_session(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        status = await make_interface(config, operator).attempt_discovery(msisdn="447700900000")

        assert status.response_type is ResponseType.START_AUTHENTICATION
        assert status.sdk_session is None

    @pytest.mark.asyncio
    async def test_caching_disabled_in_config(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        config = config.model_copy(update={"cache_responses_with_session_id": False})
        cache = MemoryCache()

        status = await make_interface(config, operator, cache).attempt_discovery(msisdn="447700900000")

        assert status.sdk_session is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_invalid_mcc_mnc_are_ignored(
        self, config: MobileConnectConfig, operator: OperatorStub, operator_selection_payload: dict[str, Any]
    ) -> None:
        operator.discovery_payload = operator_selection_payload

        status = await make_interface(config, operator).attempt_discovery(mcc="ABC", mnc="123")

        assert status.response_type is ResponseType.OPERATOR_SELECTION
        assert status.url == "https://discovery.example.com/select?session=abc"
        params = operator.requests[0].url.params
        assert "Selected-MCC" not in params
        assert "Selected-MNC" not in params

    @pytest.mark.asyncio
    async def test_malformed_msisdn_is_ignored(
        self, config: MobileConnectConfig, operator: OperatorStub, operator_selection_payload: dict[str, Any]
    ) -> None:
        operator.discovery_payload = operator_selection_payload

        status = await make_interface(config, operator).attempt_discovery(msisdn="not-a-number")

        assert status.response_type is ResponseType.OPERATOR_SELECTION
        assert operator.requests[0].method == "GET"
        assert "MSISDN" not in operator.requests[0].url.params

    @pytest.mark.asyncio
    async def test_discovery_error(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        operator.discovery_payload = {"error": "invalid_client", "description": "Unknown client"}

        status = await make_interface(config, operator).attempt_discovery()

        assert status.response_type is ResponseType.ERROR
        assert status.error_code == "invalid_client"

    @pytest.mark.asyncio
    async def test_discovery_unreachable(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        operator.discovery_unreachable = True

        status = await make_interface(config, operator).attempt_discovery(msisdn="447700900000")

        assert status.response_type is ResponseType.ERROR
        assert status.error_code == "http_failure"

    @pytest.mark.asyncio
    async def test_discovery_ttl_out_of_range(
        self, config: MobileConnectConfig, operator: OperatorStub, discovery_payload: dict[str, Any]
    ) -> None:
        operator.discovery_payload = {**discovery_payload, "ttl": 10**20}
        cache = MemoryCache()

        status = await make_interface(config, operator, cache).attempt_discovery(msisdn="447700900000")

        assert status.response_type is ResponseType.ERROR
        assert status.error_code == "invalid_response"
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_after_operator_selection(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        mobile_connect = make_interface(config, operator, MemoryCache())

        status = await mobile_connect.attempt_discovery_after_operator_selection(
            f"{REDIRECT_URL}?mcc_mnc=234_15&subscriber_id=enc-from-redirect"
        )

        assert status.response_type is ResponseType.START_AUTHENTICATION
        assert status.sdk_session is not None
        params = operator.requests[0].url.params
        assert (params["Selected-MCC"], params["Selected-MNC"]) == ("234", "15")

    @pytest.mark.asyncio
    async def test_after_operator_selection_without_selection(
        self, config: MobileConnectConfig, operator: OperatorStub
    ) -> None:
        status = await make_interface(config, operator).attempt_discovery_after_operator_selection(REDIRECT_URL)

        assert status.response_type is ResponseType.OPERATOR_SELECTION
        assert status.url is None
        assert operator.requests == []


class TestStartAuthentication:
    @pytest.mark.asyncio
    async def test_builds_url_from_discovery_response(
        self, config: MobileConnectConfig, operator: OperatorStub
    ) -> None:
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.start_authentication(discovery_response)

        assert status.response_type is ResponseType.AUTHENTICATION
        assert status.state is not None and SESSION_ID_PATTERN.match(status.state)
        assert status.nonce is not None and SESSION_ID_PATTERN.match(status.nonce)
        assert status.state != status.nonce

        assert status.url is not None
        params = httpx.URL(status.url).params
        assert params["client_id"] == OPERATOR_CLIENT_ID
        assert params["scope"] == "openid mc_authn"
        assert params["login_hint"] == "ENCR_MSISDN:enc-subscriber-id"
        assert params["version"] == "mc_v1.2"
        assert params["state"] == status.state
        assert params["nonce"] == status.nonce

    @pytest.mark.asyncio
    async def test_uses_cached_session(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        mobile_connect = make_interface(config, operator, MemoryCache())
        discovered = await mobile_connect.attempt_discovery(msisdn="447700900000")
        assert discovered.sdk_session is not None

        status = await mobile_connect.start_authentication(discovered.sdk_session, state="s", nonce="n")

        assert status.response_type is ResponseType.AUTHENTICATION
        assert (status.state, status.nonce) == ("s", "n")

    @pytest.mark.asyncio
    async def test_session_without_cache(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        status = await make_interface(config, operator).start_authentication("unknown-session")

        assert status.response_type is ResponseType.ERROR
        assert status.error_code == "cache_disabled"

    @pytest.mark.asyncio
    async def test_unknown_session(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        status = await make_interface(config, operator, MemoryCache()).start_authentication("unknown-session")

        assert status.response_type is ResponseType.ERROR
        assert status.error_code == "sdksession_not_found"

    @pytest.mark.asyncio
    async def test_operator_not_identified(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        status = await make_interface(config, operator).start_authentication(
            DiscoveryResponse(operator_selection_url="https://discovery.example.com/select")
        )

        assert status.response_type is ResponseType.ERROR
        assert status.error_code == "required_arg_missing"


class TestRequestToken:
    @pytest.mark.asyncio
    async def test_complete_flow(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_token(
            discovery_response, redirect(state="the-state"), "the-state", NONCE
        )

        assert status.response_type is ResponseType.COMPLETE
        token_response = status.token_response
        assert token_response is not None
        assert token_response.id_token_validation_result is TokenValidationResult.VALID
        assert token_response.access_token_validation_result is TokenValidationResult.VALID
        assert token_response.decoded_id_token_payload is not None
        assert token_response.decoded_id_token_payload["sub"] == "pcr-123"

        token_request = operator.requests_to("/token")[0]
        assert parse_qs(token_request.content.decode())["code"] == ["auth-code"]

    @pytest.mark.asyncio
    async def test_nonce_mismatch_is_reported_not_raised(
        self, config: MobileConnectConfig, operator: OperatorStub
    ) -> None:
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_token(discovery_response, redirect(), "the-state", "other-nonce")

        assert status.response_type is ResponseType.COMPLETE
        assert status.token_response is not None
        assert status.token_response.id_token_validation_result is TokenValidationResult.INVALID_NONCE

    @pytest.mark.asyncio
    async def test_r1_provider_skips_validation(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        operator.metadata = {"issuer": "https://somewhere-else.example.com", "mc_version": "mc_v1.1"}
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_token(discovery_response, redirect(), "the-state", NONCE)

        assert status.token_response is not None
        assert status.token_response.id_token_validation_result is TokenValidationResult.VALIDATION_SKIPPED

    @pytest.mark.asyncio
    async def test_keyset_unavailable(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        jwks = Mock(spec=JWKeysetService)
        jwks.retrieve_jwks = AsyncMock(side_effect=MobileConnectError("jwks down"))
        mobile_connect = make_interface(config, operator, jwks=jwks)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_token(discovery_response, redirect(), "the-state", NONCE)

        assert status.response_type is ResponseType.COMPLETE
        assert status.token_response is not None
        assert status.token_response.id_token_validation_result is TokenValidationResult.KEYSET_UNAVAILABLE
        jwks.retrieve_jwks.assert_awaited_once_with("https://operator.example.com/jwks", force_refresh=False)


    @pytest.mark.asyncio
    async def test_rotated_keys_are_refetched(
        self, config: MobileConnectConfig, operator: OperatorStub, signing_key: Any
    ) -> None:
        retired = JsonWebKey.generate_key("RSA", 2048, is_private=True).as_dict(is_private=False)
        jwks = Mock(spec=JWKeysetService)
        jwks.retrieve_jwks = AsyncMock(
            side_effect=[
                JWKeySet.from_dict({"keys": [retired]}),
                JWKeySet.from_dict({"keys": [signing_key.as_dict(is_private=False)]}),
            ]
        )
        mobile_connect = make_interface(config, operator, jwks=jwks)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_token(discovery_response, redirect(), "the-state", NONCE)

        assert status.token_response is not None
        assert status.token_response.id_token_validation_result is TokenValidationResult.VALID
        assert jwks.retrieve_jwks.await_args_list == [
            call("https://operator.example.com/jwks", force_refresh=False),
            call("https://operator.example.com/jwks", force_refresh=True),
        ]

    @pytest.mark.asyncio
    async def test_replaced_key_material_is_refetched(
        self, config: MobileConnectConfig, operator: OperatorStub, signing_key: Any
    ) -> None:
        replaced = JsonWebKey.generate_key("RSA", 2048, is_private=True).as_dict(is_private=False)
        replaced["kid"] = signing_key.as_dict()["kid"]
        jwks = Mock(spec=JWKeysetService)
        jwks.retrieve_jwks = AsyncMock(return_value=JWKeySet.from_dict({"keys": [replaced]}))
        mobile_connect = make_interface(config, operator, jwks=jwks)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_token(discovery_response, redirect(), "the-state", NONCE)

        assert status.token_response is not None
        assert status.token_response.id_token_validation_result is TokenValidationResult.INVALID_SIGNATURE
        assert jwks.retrieve_jwks.await_count == 2
        assert jwks.retrieve_jwks.await_args == call("https://operator.example.com/jwks", force_refresh=True)

    @pytest.mark.asyncio
    async def test_valid_token_does_not_refetch_keys(
        self, config: MobileConnectConfig, operator: OperatorStub, signing_key: Any
    ) -> None:
        jwks = Mock(spec=JWKeysetService)
        jwks.retrieve_jwks = AsyncMock(
            return_value=JWKeySet.from_dict({"keys": [signing_key.as_dict(is_private=False)]})
        )
        mobile_connect = make_interface(config, operator, jwks=jwks)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_token(discovery_response, redirect(), "the-state", NONCE)

        assert status.token_response is not None
        assert status.token_response.id_token_validation_result is TokenValidationResult.VALID
        jwks.retrieve_jwks.assert_awaited_once_with("https://operator.example.com/jwks", force_refresh=False)

    @pytest.mark.asyncio
    async def test_token_expiry_out_of_range(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        operator.token_body = {"access_token": "access-123", "expires_in": 10**20}
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_token(discovery_response, redirect(), "the-state", NONCE)

        assert status.response_type is ResponseType.ERROR
        assert status.error_code == "invalid_response"

    @pytest.mark.asyncio
    async def test_state_mismatch(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_token(discovery_response, redirect(state="forged"), "the-state", NONCE)

        assert status.response_type is ResponseType.ERROR
        assert status.error_code == "invalid_state"
        assert operator.requests_to("/token") == []

    @pytest.mark.asyncio
    async def test_error_in_redirect(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_token(
            discovery_response,
            f"{REDIRECT_URL}?error=access_denied&error_description=User+declined&state=the-state",
            "the-state",
            NONCE,
        )

        assert status.response_type is ResponseType.ERROR
        assert (status.error_code, status.error_message) == ("access_denied", "User declined")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("state, nonce", [("", NONCE), ("the-state", "")])
    async def test_expected_values_required(
        self, config: MobileConnectConfig, operator: OperatorStub, state: str, nonce: str
    ) -> None:
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_token(discovery_response, redirect(), state, nonce)

        assert status.response_type is ResponseType.ERROR
        assert status.error_code == "required_arg_missing"

    @pytest.mark.asyncio
    async def test_missing_code(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_token(
            discovery_response, f"{REDIRECT_URL}?state=the-state", "the-state", NONCE
        )

        assert status.error_code == "required_arg_missing"

    @pytest.mark.asyncio
    async def test_provider_error(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        operator.token_error = {"error": "invalid_grant", "error_description": "Code already used"}
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_token(discovery_response, redirect(), "the-state", NONCE)

        assert status.response_type is ResponseType.ERROR
        assert (status.error_code, status.error_message) == ("invalid_grant", "Code already used")


class TestHandleUrlRedirect:
    @pytest.mark.asyncio
    async def test_authorization_redirect(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        mobile_connect = make_interface(config, operator, MemoryCache())
        discovered = await mobile_connect.attempt_discovery(msisdn="447700900000")

        status = await mobile_connect.handle_url_redirect(
            redirect(), discovered.sdk_session, expected_state="the-state", expected_nonce=NONCE
        )

        assert status.response_type is ResponseType.COMPLETE
        assert status.token_response is not None

    @pytest.mark.asyncio
    async def test_authorization_redirect_without_discovery(
        self, config: MobileConnectConfig, operator: OperatorStub
    ) -> None:
        status = await make_interface(config, operator).handle_url_redirect(redirect())

        assert status.error_code == "required_arg_missing"

    @pytest.mark.asyncio
    async def test_operator_selection_redirect(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        mobile_connect = make_interface(config, operator, MemoryCache())

        status = await mobile_connect.handle_url_redirect(f"{REDIRECT_URL}?mcc_mnc=234_15")

        assert status.response_type is ResponseType.START_AUTHENTICATION
        assert status.sdk_session is not None
        assert SESSION_ID_PATTERN.match(status.sdk_session)

    @pytest.mark.asyncio
    async def test_error_redirect(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        status = await make_interface(config, operator).handle_url_redirect(
            f"{REDIRECT_URL}?error=server_error&error_description=Try+later"
        )

        assert (status.response_type, status.error_code) == (ResponseType.ERROR, "server_error")
        assert status.error_message == "Try later"

    @pytest.mark.asyncio
    async def test_unrecognised_redirect(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        status = await make_interface(config, operator).handle_url_redirect(f"{REDIRECT_URL}?foo=bar")

        assert status.error_code == "invalid_redirect"

    @pytest.mark.asyncio
    async def test_unknown_session(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        status = await make_interface(config, operator, MemoryCache()).handle_url_redirect(
            redirect(), "expired-session", "the-state", NONCE
        )

        assert status.error_code == "sdksession_not_found"
        assert operator.requests == []

    @pytest.mark.asyncio
    async def test_operator_selection_redirect_ignores_stale_session(
        self, config: MobileConnectConfig, operator: OperatorStub
    ) -> None:
        mobile_connect = make_interface(config, operator, MemoryCache())

        status = await mobile_connect.handle_url_redirect(f"{REDIRECT_URL}?mcc_mnc=234_15", "stale-session")

        assert status.response_type is ResponseType.START_AUTHENTICATION
        assert status.sdk_session is not None
        assert status.sdk_session != "stale-session"

    @pytest.mark.asyncio
    async def test_error_redirect_ignores_stale_session(
        self, config: MobileConnectConfig, operator: OperatorStub
    ) -> None:
        mobile_connect = make_interface(config, operator, MemoryCache())

        status = await mobile_connect.handle_url_redirect(f"{REDIRECT_URL}?error=access_denied", "stale-session")

        assert (status.response_type, status.error_code) == (ResponseType.ERROR, "access_denied")
        assert operator.requests == []


class TestHeadlessAuthentication:
    @pytest.mark.asyncio
    async def test_complete_flow(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_headless_authentication(discovery_response)

        assert status.response_type is ResponseType.COMPLETE
        assert status.token_response is not None
        assert status.token_response.id_token_validation_result is TokenValidationResult.VALID

        authorize_request = operator.requests_to("/authorize")[0]
        assert authorize_request.url.params["prompt"] == "mobile"

    @pytest.mark.asyncio
    async def test_timeout(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        operator.authorize_pending = True
        config = config.model_copy(update={"headless_timeout": 0.05, "headless_poll_interval": 0.01})
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_headless_authentication(discovery_response)

        assert status.response_type is ResponseType.ERROR
        assert status.error_code == "timeout"

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        operator.authorize_pending = True
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)
        event = anyio.Event()
        event.set()

        with pytest.raises(AuthenticationCancelledError):
            await mobile_connect.request_headless_authentication(discovery_response, cancel_event=event)


class TestTokenLifecycle:
    @pytest.mark.asyncio
    async def test_refresh_token_falls_back_to_token_url(
        self, config: MobileConnectConfig, operator: OperatorStub
    ) -> None:
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.refresh_token(discovery_response, "refresh-123")

        assert status.response_type is ResponseType.COMPLETE
        assert status.token_response is not None
        assert status.token_response.response_data is not None
        assert status.token_response.response_data.access_token == "refreshed-access"
        assert status.token_response.access_token_validation_result is TokenValidationResult.VALID
        assert len(operator.requests_to("/token")) == 1

    @pytest.mark.asyncio
    async def test_revoke_token(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.revoke_token(discovery_response, "access-123", "access_token")

        assert status == MobileConnectStatus.complete()

    @pytest.mark.asyncio
    async def test_revoke_token_error(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        operator.revoke_status = 400
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.revoke_token(discovery_response, "access-123")

        assert status.error_code == "unsupported_token_type"


class TestIdentity:
    @pytest.mark.asyncio
    async def test_user_info(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_user_info(discovery_response, "access-123")

        assert status.response_type is ResponseType.COMPLETE
        assert status.identity_response is not None
        user_info = status.identity_response.response_data_as(UserInfoData)
        assert user_info is not None
        assert user_info.phone_number == "+447700900000"

    @pytest.mark.asyncio
    async def test_identity(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_identity(discovery_response, "access-123")

        assert status.identity_response is not None
        user_info = status.identity_response.response_data_as(UserInfoData)
        assert user_info is not None
        assert user_info.email == "user@example.com"

    @pytest.mark.asyncio
    async def test_user_info_rejected(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        operator.userinfo_status = 401
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_user_info(discovery_response, "expired")

        assert status.response_type is ResponseType.ERROR
        assert status.error_code == "invalid_token"

    @pytest.mark.asyncio
    async def test_missing_access_token(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        mobile_connect = make_interface(config, operator)
        discovery_response = await discover(mobile_connect)

        status = await mobile_connect.request_user_info(discovery_response, "")

        assert status.error_code == "required_arg_missing"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_internal_client_is_closed(self, config: MobileConnectConfig) -> None:
        async with MobileConnectInterface(config) as mobile_connect:
            client = mobile_connect._client
            assert not client.is_closed
        assert client.is_closed

    @pytest.mark.asyncio
    async def test_external_client_is_left_open(self, config: MobileConnectConfig, operator: OperatorStub) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(operator))
        async with MobileConnectInterface(config, client=client):
            pass
        assert not client.is_closed
        await client.aclose()
