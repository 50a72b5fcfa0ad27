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
MobileConnectInterface component for orchestrating the Mobile Connect flow.
"""

import re
import uuid
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any

import anyio
import httpx
from opentelemetry import trace
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from pydantic import SecretStr

from coreason_mobile_connect.authentication import AuthenticationService
from coreason_mobile_connect.config import MobileConnectConfig
from coreason_mobile_connect.constants import (
    CODE_PARAM,
    ERROR_DESCRIPTION_PARAM,
    ERROR_PARAM,
    HEADLESS_PROMPT,
    MCC_MNC_PARAM,
    STATE_PARAM,
)
from coreason_mobile_connect.discovery import DiscoveryService
from coreason_mobile_connect.exceptions import (
    AuthenticationCancelledError,
    HeadlessTimeoutError,
    MobileConnectError,
)
from coreason_mobile_connect.identity import IdentityService
from coreason_mobile_connect.jwks import JWKeySet, JWKeysetService
from coreason_mobile_connect.models import (
    DiscoveryResponse,
    IdentityResponse,
    MobileConnectRequestOptions,
    MobileConnectStatus,
    OperatorUrls,
    ResponseType,
    TokenValidationResult,
)
from coreason_mobile_connect.session_cache import CacheProtocol, SessionCacheAdapter, generate_session_id
from coreason_mobile_connect.token_validation import validate_access_token, validate_id_token
from coreason_mobile_connect.transport import SafeHTTPTransport
from coreason_mobile_connect.utils.jwt import JWTPart, decode_json_part
from coreason_mobile_connect.utils.logger import anonymize, logger

tracer = trace.get_tracer(__name__)

_MSISDN_PATTERN = re.compile(r"^\+?\d{5,15}$")
_MCC_PATTERN = re.compile(r"^\d{3}$")
_MNC_PATTERN = re.compile(r"^\d{2,3}$")

CACHE_DISABLED = "cache_disabled"
SESSION_NOT_FOUND = "sdksession_not_found"

_KEY_ROTATION_RESULTS = (TokenValidationResult.NO_MATCHING_KEY, TokenValidationResult.INVALID_SIGNATURE)


def generate_unique_string() -> str:
    """Default state and nonce generator: a random UUID as 32 hex characters."""
    return uuid.uuid4().hex


class MobileConnectInterface:
    """
    Async implementation of the Mobile Connect flow (discovery, authorization, token, identity).

    Every operation returns a MobileConnectStatus telling the caller what to do next.
    Provider and transport failures are reported as ERROR statuses; only a cancelled
    headless authentication raises.

    Handles resources via async context manager.
    """

    def __init__(
        self,
        config: MobileConnectConfig,
        cache: CacheProtocol | None = None,
        client: httpx.AsyncClient | None = None,
        discovery: DiscoveryService | None = None,
        authentication: AuthenticationService | None = None,
        identity: IdentityService | None = None,
        jwks: JWKeysetService | None = None,
        session_id_factory: Callable[[], str] = generate_session_id,
    ) -> None:
        """
        Initialize the MobileConnectInterface.

        Args:
            config: The configuration object.
            cache: Cache capability for sdk_session ids. Session caching is active only when
                this is given AND `config.cache_responses_with_session_id` is set.
            client: External async client (optional). If not provided, a `SafeHTTPTransport` client is created.
            discovery: Discovery capability override.
            authentication: Authentication capability override.
            identity: Identity capability override.
            jwks: Key set capability override.
            session_id_factory: Generator for sdk_session ids.
        """
        self.config = config
        self._internal_client = client is None

        if client:
            self._client = client
        else:
            # Operator URLs come from remote documents, so they must not reach private networks
            transport = None if config.unsafe_local_dev else SafeHTTPTransport()
            self._client = httpx.AsyncClient(transport=transport, timeout=config.http_timeout)

        HTTPXClientInstrumentor().instrument_client(self._client)

        self.discovery = discovery or DiscoveryService(
            client_id=config.client_id,
            client_secret=config.client_secret,
            discovery_url=config.discovery_url,
            redirect_url=config.redirect_url,
            client=self._client,
        )
        self.authentication = authentication or AuthenticationService(self._client)
        self.identity = identity or IdentityService(self._client)
        self.jwks = jwks or JWKeysetService(self._client, cache_ttl=config.jwks_cache_ttl)
        self.session_cache = SessionCacheAdapter(
            cache,
            enabled=config.cache_responses_with_session_id,
            ttl=config.session_cache_ttl,
            id_factory=session_id_factory,
        )

    async def __aenter__(self) -> "MobileConnectInterface":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._internal_client:
            await self._client.aclose()

    async def _run(
        self, operation: str, step: Callable[[], Awaitable[MobileConnectStatus]]
    ) -> MobileConnectStatus:
        with tracer.start_as_current_span(f"mobileconnect.{operation}") as span:
            try:
                status = await step()
            except AuthenticationCancelledError:
                logger.info(f"{operation} cancelled by caller")
                raise
            except HeadlessTimeoutError as e:
                status = MobileConnectStatus.error("timeout", str(e))
            except MobileConnectError as e:
                logger.error(f"{operation} failed: {e}")
                status = MobileConnectStatus.error("http_failure", str(e))
            except ValueError as e:
                logger.warning(f"{operation} rejected: {e}")
                status = MobileConnectStatus.error("required_arg_missing", str(e))

            span.set_attribute("mobileconnect.response_type", status.response_type.value)
            if status.response_type is ResponseType.ERROR:
                span.set_attribute("mobileconnect.error_code", status.error_code or "")
            return status

    def _cache_error(self) -> MobileConnectStatus:
        if not self.session_cache.is_enabled:
            return MobileConnectStatus.error(
                CACHE_DISABLED, "cache is not enabled for session id caching of discovery responses"
            )
        return MobileConnectStatus.error(SESSION_NOT_FOUND, "session not found or expired, please try again")

    async def _cache_if_required(self, status: MobileConnectStatus) -> MobileConnectStatus:
        if (
            not self.session_cache.is_enabled
            or status.response_type is not ResponseType.START_AUTHENTICATION
            or status.discovery_response is None
        ):
            return status

        session_id = await self.session_cache.put(status.discovery_response)
        return status.model_copy(update={"sdk_session": session_id})

    async def _load_discovery(
        self, discovery: DiscoveryResponse | str | None
    ) -> DiscoveryResponse | MobileConnectStatus:
        """Returns the discovery response, or the ERROR status explaining why there is none."""
        if isinstance(discovery, DiscoveryResponse):
            return discovery
        if not discovery:
            return MobileConnectStatus.error("required_arg_missing", "A discovery response or sdk_session is required")

        cached = await self.session_cache.get(discovery)
        return cached if cached is not None else self._cache_error()

    def _credentials(self, discovery_response: DiscoveryResponse) -> tuple[str, SecretStr]:
        return (
            discovery_response.client_id or self.config.client_id,
            discovery_response.client_secret or self.config.client_secret,
        )

    @staticmethod
    def _operator_urls(discovery_response: DiscoveryResponse) -> OperatorUrls:
        if discovery_response.operator_urls is None:
            raise ValueError("Discovery response has no operator urls, complete operator selection first")
        return discovery_response.operator_urls

    @staticmethod
    def _status_from_discovery(discovery_response: DiscoveryResponse) -> MobileConnectStatus:
        if discovery_response.error_response is not None:
            return MobileConnectStatus.from_error_response(discovery_response.error_response)
        if discovery_response.operator_urls is not None:
            return MobileConnectStatus.start_authentication(discovery_response)
        if discovery_response.operator_selection_url:
            return MobileConnectStatus.operator_selection(discovery_response.operator_selection_url)
        return MobileConnectStatus.error(
            "invalid_response", "Discovery response has neither operator urls nor an operator selection url"
        )

    # Discovery

    async def attempt_discovery(
        self,
        msisdn: str | None = None,
        mcc: str | None = None,
        mnc: str | None = None,
        options: MobileConnectRequestOptions | None = None,
    ) -> MobileConnectStatus:
        """
        Attempts discovery with the subscriber details available.

        An MSISDN that is not a phone number and an MCC/MNC pair that is not numeric are
        ignored; discovery then answers with an operator selection URL.

        Args:
            msisdn: The subscriber's MSISDN.
            mcc: Mobile country code (3 digits).
            mnc: Mobile network code (2 or 3 digits).
            options: Optional request parameters.

        Returns:
            MobileConnectStatus: OPERATOR_SELECTION, START_AUTHENTICATION (with sdk_session when
            caching is active) or ERROR.
        """
        return await self._run("attempt_discovery", partial(self._attempt_discovery, msisdn, mcc, mnc, options))

    async def _attempt_discovery(
        self,
        msisdn: str | None,
        mcc: str | None,
        mnc: str | None,
        options: MobileConnectRequestOptions | None,
    ) -> MobileConnectStatus:
        if msisdn:
            msisdn = msisdn.replace(" ", "")
            if not _MSISDN_PATTERN.match(msisdn):
                logger.warning(f"Ignoring malformed msisdn {anonymize(msisdn, self.config.pii_salt)}")
                msisdn = None

        if not (mcc and mnc and _MCC_PATTERN.match(mcc) and _MNC_PATTERN.match(mnc)):
            if mcc or mnc:
                logger.warning("Ignoring invalid mcc/mnc pair")
            mcc = mnc = None

        if msisdn:
            logger.info(f"Attempting discovery for msisdn {anonymize(msisdn, self.config.pii_salt)}")
        elif mcc:
            logger.info(f"Attempting discovery for mcc={mcc} mnc={mnc}")
        else:
            logger.info("Attempting discovery without subscriber details")

        discovery_response = await self.discovery.start_automated_operator_discovery(
            msisdn=msisdn, mcc=mcc, mnc=mnc, options=options
        )
        return await self._cache_if_required(self._status_from_discovery(discovery_response))

    async def attempt_discovery_after_operator_selection(self, redirected_url: str) -> MobileConnectStatus:
        """
        Completes discovery with the operator selected by the user.

        Args:
            redirected_url: The URL the operator selection UI redirected to (carries ``mcc_mnc``).

        Returns:
            MobileConnectStatus: START_AUTHENTICATION, OPERATOR_SELECTION if no operator was
            selected, or ERROR.
        """
        return await self._run(
            "attempt_discovery_after_operator_selection",
            partial(self._attempt_discovery_after_operator_selection, redirected_url, True),
        )

    async def _attempt_discovery_after_operator_selection(
        self, redirected_url: str, cache: bool
    ) -> MobileConnectStatus:
        parsed = self.discovery.parse_discovery_redirect(redirected_url)
        if not parsed.has_mcc_and_mnc:
            logger.info("No operator selected, restarting operator selection")
            return MobileConnectStatus.operator_selection(None)

        discovery_response = await self.discovery.complete_selected_operator_discovery(
            parsed.selected_mcc or "", parsed.selected_mnc or "", parsed.encrypted_msisdn
        )
        status = self._status_from_discovery(discovery_response)
        return await self._cache_if_required(status) if cache else status

    # Authorization

    async def start_authentication(
        self,
        discovery: DiscoveryResponse | str,
        encrypted_msisdn: str | None = None,
        state: str | None = None,
        nonce: str | None = None,
        options: MobileConnectRequestOptions | None = None,
    ) -> MobileConnectStatus:
        """
        Builds the authorization URL for the serving operator.

        Args:
            discovery: The discovery response, or the sdk_session it was cached under.
            encrypted_msisdn: Subscriber id; defaults to the one in the discovery response.
            state: CSRF value; a random one is generated when empty.
            nonce: Replay-protection value; a random one is generated when empty.
            options: Optional authorization parameters.

        Returns:
            MobileConnectStatus: AUTHENTICATION with url, state and nonce, or ERROR.
        """
        return await self._run(
            "start_authentication",
            partial(self._start_authentication, discovery, encrypted_msisdn, state, nonce, options),
        )

    async def _start_authentication(
        self,
        discovery: DiscoveryResponse | str,
        encrypted_msisdn: str | None,
        state: str | None,
        nonce: str | None,
        options: MobileConnectRequestOptions | None,
    ) -> MobileConnectStatus:
        discovery_response = await self._load_discovery(discovery)
        if isinstance(discovery_response, MobileConnectStatus):
            return discovery_response

        state = state or generate_unique_string()
        nonce = nonce or generate_unique_string()
        options = options or MobileConnectRequestOptions()
        if not options.scope:
            options = options.model_copy(update={"scope": self.config.default_scope})

        client_id, _ = self._credentials(discovery_response)
        url = self.authentication.start_authentication(
            client_id=client_id,
            authorize_url=self._operator_urls(discovery_response).authorization_url or "",
            redirect_url=self.config.redirect_url,
            state=state,
            nonce=nonce,
            encrypted_msisdn=encrypted_msisdn or discovery_response.subscriber_id,
            version=discovery_response.provider_version,
            options=options,
        )
        return MobileConnectStatus.authentication(url, state, nonce)

    async def request_headless_authentication(
        self,
        discovery: DiscoveryResponse | str,
        encrypted_msisdn: str | None = None,
        state: str | None = None,
        nonce: str | None = None,
        options: MobileConnectRequestOptions | None = None,
        cancel_event: anyio.Event | None = None,
    ) -> MobileConnectStatus:
        """
        Runs authorization without a browser and exchanges the resulting code for tokens.

        Args:
            discovery: The discovery response, or the sdk_session it was cached under.
            encrypted_msisdn: Subscriber id; defaults to the one in the discovery response.
            state: CSRF value; a random one is generated when empty.
            nonce: Replay-protection value; a random one is generated when empty.
            options: Optional authorization parameters. ``prompt`` defaults to ``mobile``.
            cancel_event: Set by the caller to abort the wait for the user.

        Returns:
            MobileConnectStatus: COMPLETE with validated tokens, or ERROR (``timeout`` if the
            user did not respond in time).

        Raises:
            AuthenticationCancelledError: If `cancel_event` is set before the flow completes.
        """
        return await self._run(
            "request_headless_authentication",
            partial(
                self._request_headless_authentication, discovery, encrypted_msisdn, state, nonce, options, cancel_event
            ),
        )

    async def _request_headless_authentication(
        self,
        discovery: DiscoveryResponse | str,
        encrypted_msisdn: str | None,
        state: str | None,
        nonce: str | None,
        options: MobileConnectRequestOptions | None,
        cancel_event: anyio.Event | None,
    ) -> MobileConnectStatus:
        discovery_response = await self._load_discovery(discovery)
        if isinstance(discovery_response, MobileConnectStatus):
            return discovery_response

        options = options or MobileConnectRequestOptions()
        if not options.prompt:
            options = options.model_copy(update={"prompt": HEADLESS_PROMPT})

        status = await self._start_authentication(discovery_response, encrypted_msisdn, state, nonce, options)
        if status.response_type is not ResponseType.AUTHENTICATION or not status.url:
            return status

        redirected_url = await self.authentication.request_headless_authentication(
            status.url,
            self.config.redirect_url,
            cancel_event=cancel_event,
            timeout=self.config.headless_timeout,
            poll_interval=self.config.headless_poll_interval,
        )
        return await self._request_token(
            discovery_response, redirected_url, status.state or "", status.nonce or "", options
        )

    # Tokens

    async def request_token(
        self,
        discovery: DiscoveryResponse | str,
        redirected_url: str,
        expected_state: str,
        expected_nonce: str,
        options: MobileConnectRequestOptions | None = None,
    ) -> MobileConnectStatus:
        """
        Exchanges the code in the authorization redirect for tokens and validates them.

        Token validation never aborts the flow: the outcome is attached to the token response
        and the caller decides what to accept.

        Args:
            discovery: The discovery response, or the sdk_session it was cached under.
            redirected_url: The URL the operator redirected to after authorization.
            expected_state: The state returned by `start_authentication`.
            expected_nonce: The nonce returned by `start_authentication`.
            options: The options used for `start_authentication` (``max_age`` is validated).

        Returns:
            MobileConnectStatus: COMPLETE with the token response, or ERROR.
        """
        return await self._run(
            "request_token",
            partial(self._request_token, discovery, redirected_url, expected_state, expected_nonce, options),
        )

    async def _request_token(
        self,
        discovery: DiscoveryResponse | str,
        redirected_url: str,
        expected_state: str,
        expected_nonce: str,
        options: MobileConnectRequestOptions | None,
    ) -> MobileConnectStatus:
        discovery_response = await self._load_discovery(discovery)
        if isinstance(discovery_response, MobileConnectStatus):
            return discovery_response

        if not expected_state:
            return MobileConnectStatus.error("required_arg_missing", "Expected state is required")
        if not expected_nonce:
            return MobileConnectStatus.error("required_arg_missing", "Expected nonce is required")

        query = httpx.URL(redirected_url).params
        if query.get(ERROR_PARAM):
            return MobileConnectStatus.error(query[ERROR_PARAM], query.get(ERROR_DESCRIPTION_PARAM))

        if query.get(STATE_PARAM) != expected_state:
            logger.warning("State mismatch in authorization redirect")
            return MobileConnectStatus.error(
                "invalid_state",
                "State values do not match, this could suggest an attempted Cross Site Request Forgery",
            )

        code = query.get(CODE_PARAM)
        if not code:
            return MobileConnectStatus.error("required_arg_missing", "Authorization code is missing from the redirect")

        client_id, client_secret = self._credentials(discovery_response)
        urls = self._operator_urls(discovery_response)
        token_response = await self.authentication.request_token(
            client_id=client_id,
            client_secret=client_secret,
            request_token_url=urls.request_token_url or "",
            redirect_url=self.config.redirect_url,
            code=code,
        )
        if token_response.error_response is not None:
            return MobileConnectStatus.from_error_response(token_response.error_response)

        keyset = await self._retrieve_keyset(urls.jwks_url)
        data = token_response.response_data
        id_token = data.id_token if data else None
        metadata = discovery_response.provider_metadata

        validate = partial(
            validate_id_token,
            id_token,
            client_id,
            metadata.issuer if metadata else None,
            expected_nonce,
            options.max_age if options else None,
            version=discovery_response.provider_version,
        )
        id_token_result = validate(keyset=keyset)
        if keyset is not None and id_token_result in _KEY_ROTATION_RESULTS:
            # The operator may have rotated its keys since the key set was cached
            logger.info("Id token signature failed with cached keys, refreshing JWKS and retrying")
            refreshed = await self._retrieve_keyset(urls.jwks_url, force_refresh=True)
            if refreshed is not None:
                id_token_result = validate(keyset=refreshed)

        access_token_result = validate_access_token(data)

        decoded: dict[str, Any] | None = None
        if id_token:
            try:
                decoded = decode_json_part(id_token, JWTPart.CLAIMS)
            except ValueError:
                decoded = None
            if decoded and decoded.get("sub"):
                logger.info(f"Tokens issued for subject {anonymize(str(decoded['sub']), self.config.pii_salt)}")

        token_response = token_response.model_copy(
            update={
                "decoded_id_token_payload": decoded,
                "id_token_validation_result": id_token_result,
                "access_token_validation_result": access_token_result,
            }
        )
        return MobileConnectStatus.complete(token_response=token_response)

    async def _retrieve_keyset(self, jwks_url: str | None, force_refresh: bool = False) -> JWKeySet | None:
        if not jwks_url:
            return None
        try:
            return await self.jwks.retrieve_jwks(jwks_url, force_refresh=force_refresh)
        except MobileConnectError as e:
            logger.warning(f"Key set unavailable, id token signature cannot be verified: {e}")
            return None

    async def refresh_token(self, discovery: DiscoveryResponse | str, refresh_token: str) -> MobileConnectStatus:
        """
        Obtains a new access token with a refresh token.

        Returns:
            MobileConnectStatus: COMPLETE with the new token response, or ERROR.
        """
        return await self._run("refresh_token", partial(self._refresh_token, discovery, refresh_token))

    async def _refresh_token(self, discovery: DiscoveryResponse | str, refresh_token: str) -> MobileConnectStatus:
        discovery_response = await self._load_discovery(discovery)
        if isinstance(discovery_response, MobileConnectStatus):
            return discovery_response

        client_id, client_secret = self._credentials(discovery_response)
        urls = self._operator_urls(discovery_response)
        token_response = await self.authentication.refresh_token(
            client_id=client_id,
            client_secret=client_secret,
            refresh_token_url=urls.refresh_token_url or urls.request_token_url or "",
            refresh_token=refresh_token,
        )
        if token_response.error_response is not None:
            return MobileConnectStatus.from_error_response(token_response.error_response)

        token_response = token_response.model_copy(
            update={"access_token_validation_result": validate_access_token(token_response.response_data)}
        )
        return MobileConnectStatus.complete(token_response=token_response)

    async def revoke_token(
        self,
        discovery: DiscoveryResponse | str,
        token: str,
        token_type_hint: str | None = None,
    ) -> MobileConnectStatus:
        """
        Revokes an access or refresh token.

        Returns:
            MobileConnectStatus: COMPLETE on success, or ERROR.
        """
        return await self._run("revoke_token", partial(self._revoke_token, discovery, token, token_type_hint))

    async def _revoke_token(
        self, discovery: DiscoveryResponse | str, token: str, token_type_hint: str | None
    ) -> MobileConnectStatus:
        discovery_response = await self._load_discovery(discovery)
        if isinstance(discovery_response, MobileConnectStatus):
            return discovery_response

        client_id, client_secret = self._credentials(discovery_response)
        error_response = await self.authentication.revoke_token(
            client_id=client_id,
            client_secret=client_secret,
            revoke_token_url=self._operator_urls(discovery_response).revoke_token_url or "",
            token=token,
            token_type_hint=token_type_hint,
        )
        if error_response is not None:
            return MobileConnectStatus.from_error_response(error_response)
        return MobileConnectStatus.complete()

    # Redirects

    async def handle_url_redirect(
        self,
        redirected_url: str,
        discovery: DiscoveryResponse | str | None = None,
        expected_state: str | None = None,
        expected_nonce: str | None = None,
        options: MobileConnectRequestOptions | None = None,
    ) -> MobileConnectStatus:
        """
        Continues the flow from whatever redirect the caller received.

        An authorization redirect (``code``) leads to a token request, an operator selection
        redirect (``mcc_mnc``) to discovery, an ``error`` parameter to ERROR.

        Args:
            redirected_url: The URL redirected to by the previous step.
            discovery: The discovery response or sdk_session; required for authorization redirects.
            expected_state: Required for authorization redirects.
            expected_nonce: Required for authorization redirects.
            options: Optional request parameters.

        Returns:
            MobileConnectStatus: The next step, cached when it is START_AUTHENTICATION.
        """
        return await self._run(
            "handle_url_redirect",
            partial(self._handle_url_redirect, redirected_url, discovery, expected_state, expected_nonce, options),
        )

    async def _handle_url_redirect(
        self,
        redirected_url: str,
        discovery: DiscoveryResponse | str | None,
        expected_state: str | None,
        expected_nonce: str | None,
        options: MobileConnectRequestOptions | None,
    ) -> MobileConnectStatus:
        query = httpx.URL(redirected_url).params
        if query.get(CODE_PARAM):
            if not discovery:
                return MobileConnectStatus.error(
                    "required_arg_missing", "A discovery response is required to handle an authorization redirect"
                )
            discovery_response = await self._load_discovery(discovery)
            if isinstance(discovery_response, MobileConnectStatus):
                return discovery_response
            return await self._request_token(
                discovery_response, redirected_url, expected_state or "", expected_nonce or "", options
            )

        if query.get(MCC_MNC_PARAM):
            status = await self._attempt_discovery_after_operator_selection(redirected_url, False)
            return await self._cache_if_required(status)

        if query.get(ERROR_PARAM):
            return MobileConnectStatus.error(query[ERROR_PARAM], query.get(ERROR_DESCRIPTION_PARAM))

        return MobileConnectStatus.error(
            "invalid_redirect", "Redirected URL is not a recognised Mobile Connect redirect"
        )

    # Identity

    async def request_user_info(self, discovery: DiscoveryResponse | str, access_token: str) -> MobileConnectStatus:
        """
        Requests user info with the access token from `request_token`.

        Returns:
            MobileConnectStatus: COMPLETE with an identity response, or ERROR.
        """
        return await self._run("request_user_info", partial(self._request_info, discovery, access_token, False))

    async def request_identity(self, discovery: DiscoveryResponse | str, access_token: str) -> MobileConnectStatus:
        """
        Requests premium info (identity) with the access token from `request_token`.

        Returns:
            MobileConnectStatus: COMPLETE with an identity response, or ERROR.
        """
        return await self._run("request_identity", partial(self._request_info, discovery, access_token, True))

    async def _request_info(
        self, discovery: DiscoveryResponse | str, access_token: str, premium: bool
    ) -> MobileConnectStatus:
        discovery_response = await self._load_discovery(discovery)
        if isinstance(discovery_response, MobileConnectStatus):
            return discovery_response

        urls = self._operator_urls(discovery_response)
        response: IdentityResponse
        if premium:
            response = await self.identity.request_identity(urls.premium_info_url or "", access_token)
        else:
            response = await self.identity.request_user_info(urls.user_info_url or "", access_token)

        if response.error_response is not None:
            return MobileConnectStatus.from_error_response(response.error_response)
        return MobileConnectStatus.complete(identity_response=response)
