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
Protocol constants shared by the discovery, authentication and validation components.
"""

from enum import StrEnum


class LinkRel(StrEnum):
    """Relation names used in the operator-id link collection of a discovery response."""

    AUTHORIZATION = "authorization"
    TOKEN = "token"
    USERINFO = "userinfo"
    PREMIUMINFO = "premiuminfo"
    JWKS = "jwks"
    TOKENREFRESH = "tokenrefresh"
    TOKENREVOKE = "tokenrevoke"
    OPENID_CONFIGURATION = "openid-configuration"
    SCOPE = "scope"
    OPERATOR_SELECTION = "operatorSelection"


class SupportedVersions(StrEnum):
    """
    Mobile Connect service versions advertised by providers (``mc_version`` in provider metadata).

    Ordered from oldest to newest.
    """

    R1 = "mc_v1.1"
    R2 = "mc_v1.2"
    DI_R2 = "mc_di_r2_v2.3"

    @classmethod
    def latest_of(cls, versions: list[str]) -> str | None:
        """Returns the newest known version in `versions`, or None if none are known."""
        known = [v for v in cls if v.value in versions]
        return known[-1].value if known else None


class Scope(StrEnum):
    OPENID = "openid"
    AUTHN = "mc_authn"
    AUTHZ = "mc_authz"
    IDENTITY_PHONE = "mc_identity_phonenumber"
    IDENTITY_SIGNUP = "mc_identity_signup"
    IDENTITY_NATIONALID = "mc_identity_nationalid"


DEFAULT_SCOPE = f"{Scope.OPENID} {Scope.AUTHN}"
DEFAULT_ACR_VALUES = "2"
HEADLESS_PROMPT = "mobile"

# Query parameters found on redirects back to the client
MCC_MNC_PARAM = "mcc_mnc"
SUBSCRIBER_ID_PARAM = "subscriber_id"
CODE_PARAM = "code"
STATE_PARAM = "state"
ERROR_PARAM = "error"
ERROR_DESCRIPTION_PARAM = "error_description"
