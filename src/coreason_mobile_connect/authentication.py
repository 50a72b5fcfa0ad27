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
AuthenticationService component for the authorization request, token requests and headless authentication.
"""

import anyio
import httpx
from pydantic import SecretStr, ValidationError

from coreason_mobile_connect.constants import DEFAULT_ACR_VALUES, DEFAULT_SCOPE, Scope
from coreason_mobile_connect.exceptions import AuthenticationCancelledError, HeadlessTimeoutError
from coreason_mobile_connect.models import (
    ErrorResponse,
    MobileConnectRequestOptions,
    RequestTokenResponse,
    RequestTokenResponseData,
)
from coreason_mobile_connect.transport import json_body, safe_request
from coreason_mobile_connect.utils.logger import logger

_OPTIONAL_AUTH_PARAMS = (
    "prompt",
    "display",
    "ui_locales",
    "claims_locales",
    "id_token_hint",
    "context",
    "binding_message",
)


def _coerce_scope(scope: str | None) -> str:
    """Returns the requested scope with ``openid`` guaranteed to be first."""
    values = (scope or DEFAULT_SCOPE).split()
    rest = [v for v in dict.fromkeys(values) if v != Scope.OPENID]
    return " ".join([Scope.OPENID.value, *rest])


def parse_token_response(response: httpx.Response) -> RequestTokenResponse:
    """
    Builds a RequestTokenResponse from a token endpoint response.

    OAuth errors are reported in `error_response`, never raised.
    """
    data = json_body(response)

    if data is not None and data.get("error"):
        return RequestTokenResponse(
            response_code=response.status_code,
            error_response=ErrorResponse.model_validate(data),
        )

    if response.status_code >= 400 or data is None:
        return RequestTokenResponse(
            response_code=response.status_code,
            error_response=ErrorResponse(
                error="http_failure", error_description=f"Token endpoint returned HTTP {response.status_code}"
            ),
        )

    try:
        response_data = RequestTokenResponseData.model_validate(data)
    except ValidationError as e:
        logger.error(f"Invalid token response: {e}")
        return RequestTokenResponse(
            response_code=response.status_code,
            error_response=ErrorResponse(error="invalid_response", error_description="Malformed token response"),
        )

    return RequestTokenResponse(response_code=response.status_code, response_data=response_data)


class AuthenticationService:
    """
    Talks to the operator's authorization, token and revocation endpoints.

    Attributes:
        client (httpx.AsyncClient): The async HTTP client used for requests.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    def start_authentication(
        self,
        client_id: str,
        authorize_url: str,
        redirect_url: str,
        state: str,
        nonce: str,
        encrypted_msisdn: str | None = None,
        version: str | None = None,
        options: MobileConnectRequestOptions | None = None,
    ) -> str:
        """
        Builds the authorization URL the user must be redirected to.

        Args:
            client_id: Operator-issued client id.
            authorize_url: The operator's authorization endpoint.
            redirect_url: Where the operator returns the user with a code.
            state: Opaque value echoed back in the redirect.
            nonce: Value the id token must carry.
            encrypted_msisdn: Subscriber id from discovery, sent as login hint.
            version: Mobile Connect version served by the provider.
            options: Optional authorization parameters.

        Returns:
            str: The authorization URL.

        Raises:
            ValueError: If a required argument is missing.
        """
        for name, value in (
            ("client_id", client_id),
            ("authorize_url", authorize_url),
            ("redirect_url", redirect_url),
            ("state", state),
            ("nonce", nonce),
        ):
            if not value:
                raise ValueError(f"Required argument '{name}' is missing")

        options = options or MobileConnectRequestOptions()
        params: dict[str, str] = {
            "client_id": client_id,
            "response_type": "code",
            "scope": _coerce_scope(options.scope),
            "redirect_uri": redirect_url,
            "acr_values": options.acr_values or DEFAULT_ACR_VALUES,
            "state": state,
            "nonce": nonce,
        }
        if version:
            params["version"] = version
        if options.max_age is not None:
            params["max_age"] = str(options.max_age)

        login_hint = options.login_hint or (f"ENCR_MSISDN:{encrypted_msisdn}" if encrypted_msisdn else None)
        if login_hint:
            params["login_hint"] = login_hint

        for name in _OPTIONAL_AUTH_PARAMS:
            value = getattr(options, name)
            if value:
                params[name] = value

        return str(httpx.URL(authorize_url).copy_merge_params(params))

    async def request_token(
        self,
        client_id: str,
        client_secret: SecretStr,
        request_token_url: str,
        redirect_url: str,
        code: str,
    ) -> RequestTokenResponse:
        """
        Exchanges an authorization code for tokens.

        Raises:
            ValueError: If a required argument is missing.
            MobileConnectError: If the token endpoint cannot be reached.
        """
        if not request_token_url or not code:
            raise ValueError("Token URL and authorization code are required")

        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_url,
        }
        response = await safe_request(
            self.client,
            "POST",
            request_token_url,
            data=data,
            headers={"Accept": "application/json"},
            auth=httpx.BasicAuth(client_id, client_secret.get_secret_value()),
        )
        logger.info(f"Token request completed with HTTP {response.status_code}")
        return parse_token_response(response)

    async def refresh_token(
        self,
        client_id: str,
        client_secret: SecretStr,
        refresh_token_url: str,
        refresh_token: str,
    ) -> RequestTokenResponse:
        """
        Obtains a new access token with a refresh token.

        Raises:
            ValueError: If a required argument is missing.
            MobileConnectError: If the refresh endpoint cannot be reached.
        """
        if not refresh_token_url or not refresh_token:
            raise ValueError("Refresh URL and refresh token are required")

        response = await safe_request(
            self.client,
            "POST",
            refresh_token_url,
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
            headers={"Accept": "application/json"},
            auth=httpx.BasicAuth(client_id, client_secret.get_secret_value()),
        )
        return parse_token_response(response)

    async def revoke_token(
        self,
        client_id: str,
        client_secret: SecretStr,
        revoke_token_url: str,
        token: str,
        token_type_hint: str | None = None,
    ) -> ErrorResponse | None:
        """
        Revokes an access or refresh token (RFC 7009).

        Returns:
            ErrorResponse | None: None on success, otherwise the reported error.

        Raises:
            ValueError: If a required argument is missing.
            MobileConnectError: If the revocation endpoint cannot be reached.
        """
        if not revoke_token_url or not token:
            raise ValueError("Revoke URL and token are required")

        data = {"token": token}
        if token_type_hint:
            data["token_type_hint"] = token_type_hint

        response = await safe_request(
            self.client,
            "POST",
            revoke_token_url,
            data=data,
            auth=httpx.BasicAuth(client_id, client_secret.get_secret_value()),
        )
        if response.status_code < 400:
            return None

        body = json_body(response)
        if body is not None and body.get("error"):
            return ErrorResponse.model_validate(body)
        return ErrorResponse(
            error="http_failure", error_description=f"Revocation endpoint returned HTTP {response.status_code}"
        )

    async def request_headless_authentication(
        self,
        authentication_url: str,
        redirect_url: str,
        cancel_event: anyio.Event | None = None,
        timeout: float = 300.0,
        poll_interval: float = 2.0,
    ) -> str:
        """
        Drives an authorization request without a browser.

        The operator holds the request while the user confirms on their device. Redirects
        are followed one by one until one points at `redirect_url`; other responses are
        retried every `poll_interval` seconds.

        Args:
            authentication_url: URL returned by `start_authentication`.
            redirect_url: The registered redirect URL.
            cancel_event: Set by the caller to abort the wait.
            timeout: Overall time budget in seconds.
            poll_interval: Seconds between retries of a pending request.

        Returns:
            str: The final redirect URL, carrying the code or an error.

        Raises:
            AuthenticationCancelledError: If `cancel_event` is set.
            HeadlessTimeoutError: If `timeout` elapses first.
            MobileConnectError: If a request fails at the transport level.
        """
        cancel_event = cancel_event or anyio.Event()
        try:
            with anyio.fail_after(timeout):
                return await self._follow_redirects(authentication_url, redirect_url, cancel_event, poll_interval)
        except TimeoutError as e:
            logger.warning(f"Headless authentication timed out after {timeout}s")
            raise HeadlessTimeoutError(f"Headless authentication timed out after {timeout}s") from e

    async def _follow_redirects(
        self,
        url: str,
        redirect_url: str,
        cancel_event: anyio.Event,
        poll_interval: float,
    ) -> str:
        current = url
        while True:
            if cancel_event.is_set():
                raise AuthenticationCancelledError("Headless authentication was cancelled")

            response = await safe_request(self.client, "GET", current, follow_redirects=False)

            if response.is_redirect:
                location = str(httpx.URL(current).join(response.headers["Location"]))
                if location.startswith(redirect_url):
                    logger.info("Headless authentication reached the redirect URL")
                    return location
                logger.debug(f"Following headless authentication redirect (HTTP {response.status_code})")
                current = location
                continue

            logger.debug(f"Headless authentication pending (HTTP {response.status_code})")
            with anyio.move_on_after(poll_interval):
                await cancel_event.wait()
