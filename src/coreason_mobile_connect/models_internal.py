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
Internal data models for the coreason-mobile-connect package.
These describe raw discovery payloads and redirect parameters and are not exposed in the public API.
"""

from pydantic import BaseModel, ConfigDict, Field


class Link(BaseModel):
    """A single ``{"rel": ..., "href": ...}`` entry of a discovery link collection."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    rel: str | None = None
    href: str | None = None


class OperatorIdApi(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    link: list[Link] | None = None


class DiscoveryApis(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    operatorid: OperatorIdApi | None = None


class DiscoveryResponseBody(BaseModel):
    """
    The ``response`` block of a successful discovery payload.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    serving_operator: str | None = None
    country: str | None = None
    currency: str | None = None
    client_id: str | None = Field(default=None, description="Operator-specific client id.")
    client_secret: str | None = Field(default=None, description="Operator-specific client secret.")
    client_name: str | None = None
    apis: DiscoveryApis | None = None


class DiscoveryPayload(BaseModel):
    """
    Parsed body returned by the discovery service.

    Either ``response`` (operator identified), ``links`` (operator selection required)
    or ``error`` is populated.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    ttl: int | None = None
    subscriber_id: str | None = None
    response: DiscoveryResponseBody | None = None
    links: list[Link] | None = None
    error: str | None = None
    error_description: str | None = None


class ParsedDiscoveryRedirect(BaseModel):
    """
    Values extracted from the redirect issued by the operator selection UI.
    """

    model_config = ConfigDict(frozen=True)

    selected_mcc: str | None = None
    selected_mnc: str | None = None
    encrypted_msisdn: str | None = None

    @property
    def has_mcc_and_mnc(self) -> bool:
        return bool(self.selected_mcc) and bool(self.selected_mnc)
