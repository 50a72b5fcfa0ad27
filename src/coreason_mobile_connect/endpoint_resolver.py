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
Endpoint resolution: operator URLs from a discovery payload, overridden by provider metadata.
"""

from typing import Any

from pydantic import ValidationError

from coreason_mobile_connect.constants import LinkRel
from coreason_mobile_connect.models import OperatorUrls, ProviderMetadata
from coreason_mobile_connect.models_internal import DiscoveryPayload, Link
from coreason_mobile_connect.utils.logger import logger

# OperatorUrls field -> ProviderMetadata field
_OVERRIDABLE_FIELDS = {
    "authorization_url": "authorization_endpoint",
    "request_token_url": "token_endpoint",
    "user_info_url": "userinfo_endpoint",
    "premium_info_url": "premiuminfo_endpoint",
    "jwks_url": "jwks_uri",
    "refresh_token_url": "refresh_endpoint",
    "revoke_token_url": "revoke_endpoint",
}


def _get_url(links: list[Link], rel: str) -> str | None:
    return next((link.href for link in links if link.rel == rel), None)


def resolve_operator_urls(payload: DiscoveryPayload | dict[str, Any] | None) -> OperatorUrls | None:
    """
    Extracts the operator endpoint URLs from a discovery payload.

    Each URL is the href of the first link with the matching relation; relations that are
    not present leave the field unset.

    Args:
        payload: The parsed discovery response body.

    Returns:
        OperatorUrls | None: The resolved URLs, or None when the payload carries no operator-id links.
    """
    if payload is None:
        return None

    if not isinstance(payload, DiscoveryPayload):
        try:
            payload = DiscoveryPayload.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Discovery payload has an unexpected shape, no operator urls resolved: {e}")
            return None

    body = payload.response
    links = body.apis.operatorid.link if body and body.apis and body.apis.operatorid else None
    if links is None:
        return None

    return OperatorUrls(
        authorization_url=_get_url(links, LinkRel.AUTHORIZATION),
        request_token_url=_get_url(links, LinkRel.TOKEN),
        user_info_url=_get_url(links, LinkRel.USERINFO),
        premium_info_url=_get_url(links, LinkRel.PREMIUMINFO),
        jwks_url=_get_url(links, LinkRel.JWKS),
        refresh_token_url=_get_url(links, LinkRel.TOKENREFRESH),
        revoke_token_url=_get_url(links, LinkRel.TOKENREVOKE),
        provider_metadata_url=_get_url(links, LinkRel.OPENID_CONFIGURATION),
        scope_url=_get_url(links, LinkRel.SCOPE),
    )


def get_operator_selection_url(payload: DiscoveryPayload) -> str | None:
    """Returns the operator selection URL of a discovery payload, if the operator could not be identified."""
    return _get_url(payload.links or [], LinkRel.OPERATOR_SELECTION)


def apply_overrides(urls: OperatorUrls, metadata: ProviderMetadata | None) -> None:
    """
    Replaces operator URLs with the endpoints advertised in provider metadata.

    Operators use this to redirect traffic while a primary URL is down. Only non-empty
    metadata values replace a URL; a missing value never blanks a known one.

    Args:
        urls: The operator URLs to update in place.
        metadata: Provider metadata; None is a no-op.
    """
    if metadata is None:
        return

    for url_field, metadata_field in _OVERRIDABLE_FIELDS.items():
        override = getattr(metadata, metadata_field)
        if override:
            setattr(urls, url_field, override)
