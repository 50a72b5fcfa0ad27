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
IdentityService component for the user info and premium info endpoints.
"""

from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from coreason_mobile_connect.models import IdentityInfoType, IdentityResponse, UnixTimestamp
from coreason_mobile_connect.transport import safe_request
from coreason_mobile_connect.utils.logger import logger


class UserInfoData(BaseModel):
    """
    Typed view of a user info or premium info payload.

    Attributes:
        sub (str): The subject (pseudonymous subscriber id, PCR).
        phone_number (Optional[str]): The subscriber's phone number, if the scope released it.
        email (Optional[str]): The subscriber's email address.
        address (Dict[str, Any]): Structured address claim.
        updated_at (datetime | None): Time the information was last updated.
    """

    model_config = ConfigDict(extra="allow")

    sub: str
    name: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    email: Optional[str] = None
    email_verified: Optional[bool] = None
    phone_number: Optional[str] = None
    phone_number_verified: Optional[bool] = None
    birthdate: Optional[str] = None
    locale: Optional[str] = None
    address: Dict[str, Any] = Field(default_factory=dict)
    updated_at: UnixTimestamp = None

    @field_validator("address", mode="before")
    @classmethod
    def ensure_dict(cls, v: Any) -> Dict[str, Any]:
        """Operators send the address either as an object or as a single formatted string."""
        if v is None:
            return {}
        if isinstance(v, str):
            return {"formatted": v}
        return v


class IdentityService:
    """
    Requests identity information with an access token.

    Attributes:
        client (httpx.AsyncClient): The async HTTP client used for requests.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def request_info(self, url: str, access_token: str, info_type: IdentityInfoType) -> IdentityResponse:
        """
        Calls an identity endpoint with a bearer token.

        Args:
            url: The user info or premium info URL.
            access_token: Access token from the token response.
            info_type: Which endpoint is called.

        Returns:
            IdentityResponse: Parsed response; failures are reported in `error_response`.

        Raises:
            ValueError: If the URL or access token is missing.
            MobileConnectError: If the endpoint cannot be reached.
        """
        if not url:
            raise ValueError(f"No {info_type} URL available for this operator")
        if not access_token:
            raise ValueError("Access token is required")

        response = await safe_request(
            self.client,
            "GET",
            url,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
        logger.debug(f"{info_type} request completed with HTTP {response.status_code}")
        return IdentityResponse.from_http(response.status_code, response.text, response.headers, info_type)

    async def request_user_info(self, user_info_url: str, access_token: str) -> IdentityResponse:
        return await self.request_info(user_info_url, access_token, IdentityInfoType.USER_INFO)

    async def request_identity(self, premium_info_url: str, access_token: str) -> IdentityResponse:
        return await self.request_info(premium_info_url, access_token, IdentityInfoType.PREMIUM_INFO)
