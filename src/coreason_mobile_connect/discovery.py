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
DiscoveryService component for resolving the serving operator of a subscriber.
"""

from typing import Any

import httpx
from pydantic import SecretStr, ValidationError

from coreason_mobile_connect.constants import MCC_MNC_PARAM, SUBSCRIBER_ID_PARAM, SupportedVersions
from coreason_mobile_connect.endpoint_resolver import (
    apply_overrides,
    get_operator_selection_url,
    resolve_operator_urls,
)
from coreason_mobile_connect.exceptions import MobileConnectError
from coreason_mobile_connect.models import (
    DiscoveryResponse,
    ErrorResponse,
    MobileConnectRequestOptions,
    ProviderMetadata,
)
from coreason_mobile_connect.models_internal import DiscoveryPayload, ParsedDiscoveryRedirect
from coreason_mobile_connect.transport import json_body, safe_request
from coreason_mobile_connect.utils.logger import logger


def build_discovery_response(status_code: int, data: dict[str, Any] | None) -> DiscoveryResponse:
    """
    Builds a DiscoveryResponse from the parsed body of a discovery call.

    Args:
        status_code: HTTP status code of the discovery call.
        data: Parsed JSON body, None if the body was empty or not a JSON object.

    Returns:
        DiscoveryResponse: With operator URLs, an operator selection URL, or an error response.
    """
    if data is None:
        return DiscoveryResponse(
            response_code=status_code,
            error_response=ErrorResponse(
                error="invalid_response", error_description="Discovery response is not a JSON object"
            ),
        )

    try:
        payload = DiscoveryPayload.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Discovery response has an unexpected shape: {e}")
        return DiscoveryResponse(
            response_code=status_code,
            error_response=ErrorResponse(error="invalid_response", error_description="Malformed discovery response"),
            response_data=data,
        )

    error_response = None
    if payload.error:
        error_response = ErrorResponse(error=payload.error, error_description=payload.error_description)
    elif status_code >= 400:
        error_response = ErrorResponse(
            error="http_failure", error_description=f"Discovery service returned HTTP {status_code}"
        )

    body = payload.response
    try:
        return DiscoveryResponse(
            response_code=status_code,
            ttl=payload.ttl,
            subscriber_id=payload.subscriber_id,
            client_id=body.client_id if body else None,
            client_secret=SecretStr(body.client_secret) if body and body.client_secret else None,
            client_name=body.client_name if body else None,
            operator_selection_url=get_operator_selection_url(payload),
            operator_urls=resolve_operator_urls(payload),
            error_response=error_response,
            response_data=data,
        )
    except ValidationError as e:
        logger.warning(f"Discovery response has invalid values: {e}")
        return DiscoveryResponse(
            response_code=status_code,
            error_response=ErrorResponse(error="invalid_response", error_description="Malformed discovery response"),
            response_data=data,
        )


class DiscoveryService:
    """
    Calls the discovery service to identify the subscriber's operator.

    Attributes:
        client_id (str): Client id issued by the discovery service.
        discovery_url (str): URL of the discovery service.
        redirect_url (str): Redirect URL registered for this client.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: SecretStr,
        discovery_url: str,
        redirect_url: str,
        client: httpx.AsyncClient,
    ) -> None:
        """
        Initialize the DiscoveryService.

        Args:
            client_id: Client id issued by the discovery service.
            client_secret: Client secret issued by the discovery service.
            discovery_url: URL of the discovery service.
            redirect_url: Redirect URL the operator selection UI returns to.
            client: The async HTTP client to use for requests.
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.discovery_url = discovery_url
        self.redirect_url = redirect_url
        self.client = client

    def _auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.client_id, self.client_secret.get_secret_value())

    async def _discover(
        self,
        params: dict[str, str],
        options: MobileConnectRequestOptions | None,
        use_post: bool = False,
    ) -> DiscoveryResponse:
        headers = {"Accept": "application/json"}
        if options and options.client_ip:
            headers["X-Source-IP"] = options.client_ip

        if use_post:
            response = await safe_request(
                self.client, "POST", self.discovery_url, data=params, headers=headers, auth=self._auth()
            )
        else:
            response = await safe_request(
                self.client, "GET", self.discovery_url, params=params, headers=headers, auth=self._auth()
            )

        discovery_response = build_discovery_response(response.status_code, json_body(response))
        return await self._complete_with_provider_metadata(discovery_response)

    async def start_automated_operator_discovery(
        self,
        msisdn: str | None = None,
        mcc: str | None = None,
        mnc: str | None = None,
        options: MobileConnectRequestOptions | None = None,
    ) -> DiscoveryResponse:
        """
        Starts discovery with whatever identifies the subscriber.

        Without an MSISDN or MCC/MNC pair the discovery service answers with an
        operator selection URL.

        Args:
            msisdn: The subscriber's MSISDN.
            mcc: Mobile country code.
            mnc: Mobile network code.
            options: Optional request parameters.

        Returns:
            DiscoveryResponse: The parsed discovery result.

        Raises:
            MobileConnectError: If the discovery service cannot be reached.
        """
        params = {"Redirect_URL": self.redirect_url}
        if msisdn:
            params["MSISDN"] = msisdn.lstrip("+")
        if mcc and mnc:
            params["Selected-MCC"] = mcc
            params["Selected-MNC"] = mnc

        return await self._discover(params, options, use_post=bool(msisdn))

    async def complete_selected_operator_discovery(
        self,
        selected_mcc: str,
        selected_mnc: str,
        encrypted_msisdn: str | None = None,
    ) -> DiscoveryResponse:
        """
        Finishes discovery with the operator the user picked in the operator selection UI.

        Raises:
            ValueError: If the MCC or MNC is empty.
            MobileConnectError: If the discovery service cannot be reached.
        """
        if not selected_mcc or not selected_mnc:
            raise ValueError("Selected MCC and MNC must both be provided")

        params = {
            "Redirect_URL": self.redirect_url,
            "Selected-MCC": selected_mcc,
            "Selected-MNC": selected_mnc,
        }
        response = await self._discover(params, None)
        if encrypted_msisdn and response.subscriber_id is None:
            response = response.model_copy(update={"subscriber_id": encrypted_msisdn})
        return response

    @staticmethod
    def parse_discovery_redirect(redirected_url: str) -> ParsedDiscoveryRedirect:
        """
        Extracts the selected MCC/MNC and encrypted MSISDN from an operator selection redirect.

        The ``mcc_mnc`` parameter has the form ``<mcc>_<mnc>``.
        """
        query = httpx.URL(redirected_url).params
        mcc_mnc = query.get(MCC_MNC_PARAM) or ""
        mcc, _, mnc = mcc_mnc.partition("_")
        return ParsedDiscoveryRedirect(
            selected_mcc=mcc or None,
            selected_mnc=mnc or None,
            encrypted_msisdn=query.get(SUBSCRIBER_ID_PARAM) or None,
        )

    async def retrieve_provider_metadata(self, url: str) -> ProviderMetadata | None:
        """
        Fetches the operator's openid-configuration document.

        Returns:
            ProviderMetadata | None: The metadata, or None if the document is unavailable or invalid.
        """
        try:
            response = await safe_request(self.client, "GET", url, headers={"Accept": "application/json"})
        except MobileConnectError as e:
            logger.warning(f"Provider metadata unavailable at {url}: {e}")
            return None

        data = json_body(response)
        if response.status_code >= 400 or data is None:
            logger.warning(f"Provider metadata unavailable at {url} (HTTP {response.status_code})")
            return None

        try:
            return ProviderMetadata.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Invalid provider metadata from {url}: {e}")
            return None

    async def _complete_with_provider_metadata(self, discovery_response: DiscoveryResponse) -> DiscoveryResponse:
        urls = discovery_response.operator_urls
        if urls is None or not urls.provider_metadata_url:
            return discovery_response

        metadata = await self.retrieve_provider_metadata(urls.provider_metadata_url)
        if metadata is None:
            return discovery_response

        apply_overrides(urls, metadata)
        return discovery_response.model_copy(
            update={
                "provider_metadata": metadata,
                "provider_version": SupportedVersions.latest_of(metadata.mc_version),
            }
        )
