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
Configuration for the coreason-mobile-connect package.
"""

from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from coreason_mobile_connect.constants import DEFAULT_SCOPE


class MobileConnectConfig(BaseSettings):
    """
    Configuration settings for coreason-mobile-connect.

    Attributes:
        client_id (str): Client ID issued by the discovery service.
        client_secret (SecretStr): Client secret issued by the discovery service.
        discovery_url (str): URL of the discovery service.
        redirect_url (str): Redirect URL registered for this client.
        cache_responses_with_session_id (bool): Store discovery responses under an sdk_session id.
        pii_salt (SecretStr): Salt for anonymizing MSISDNs and subjects in logs.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_MC_",
        case_sensitive=False,
    )

    unsafe_local_dev: bool = False
    client_id: str
    client_secret: SecretStr
    discovery_url: str
    redirect_url: str
    cache_responses_with_session_id: bool = True
    session_cache_ttl: int | None = Field(default=3600, description="Lifetime of sdk_session entries in seconds.")
    http_timeout: float = Field(default=10.0, description="Timeout in seconds for all network operations.")
    default_scope: str = DEFAULT_SCOPE
    pii_salt: SecretStr = SecretStr("coreason-unsafe-default-salt")
    jwks_cache_ttl: int = Field(default=3600, description="Lifetime of cached key sets in seconds.")
    headless_timeout: float = Field(default=300.0, description="Maximum seconds to wait for a headless user response.")
    headless_poll_interval: float = Field(default=2.0, description="Seconds between headless redirect polls.")

    @field_validator("discovery_url", "redirect_url", mode="after")
    @classmethod
    def validate_https(cls, v: str, info: ValidationInfo) -> str:
        """
        Ensures that the URL uses HTTPS, unless strictly opted out for local dev.
        """
        if v.startswith("http://") and not info.data.get("unsafe_local_dev", False):
            raise ValueError(
                f"HTTPS is required for '{info.field_name}'. Set 'unsafe_local_dev=True' only for local testing."
            )
        return v

    @field_validator("client_id")
    @classmethod
    def validate_client_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("client_id must not be empty")
        return v
