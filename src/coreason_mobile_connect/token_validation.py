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
Token validation for id tokens and access tokens returned by the operator token endpoint.

Validation never raises for token content: every failure is reported as a
TokenValidationResult so callers must branch on it.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from opentelemetry import trace

from coreason_mobile_connect.constants import SupportedVersions
from coreason_mobile_connect.exceptions import InvalidKeyError, UnsupportedAlgorithmError
from coreason_mobile_connect.jwks import JWKeySet
from coreason_mobile_connect.models import RequestTokenResponseData, TokenValidationResult
from coreason_mobile_connect.utils.jwt import JWTPart, decode_json_part
from coreason_mobile_connect.utils.logger import logger

tracer = trace.get_tracer(__name__)


def _to_datetime(value: Any) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(value, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


def _decode_claims(id_token: str) -> dict[str, Any]:
    try:
        return decode_json_part(id_token, JWTPart.CLAIMS)
    except ValueError:
        logger.warning("Id token claims could not be decoded, validating against an empty claim set")
        return {}


def _does_aud_or_azp_match_client_id(claims: dict[str, Any], client_id: str) -> bool:
    aud = claims.get("aud")
    if isinstance(aud, list):
        if client_id not in aud:
            return False
    elif aud != client_id:
        return False

    # An absent azp passes, even when aud holds several audiences
    azp = claims.get("azp")
    return not azp or azp == client_id


def validate_id_token_claims(
    id_token: str,
    client_id: str,
    issuer: str | None,
    nonce: str | None,
    max_age: int | None,
) -> TokenValidationResult:
    """
    Validates the claims of an id token. The first failing check is reported, in the order
    nonce, aud/azp, exp, auth_time (max_age), iss.

    Args:
        id_token: The compact serialized id token.
        client_id: Client id that must appear in aud (and equal azp when present).
        issuer: Expected iss claim.
        nonce: Expected nonce; None skips the check.
        max_age: Maximum seconds since authentication; None skips the check.

    Returns:
        TokenValidationResult: VALID or the first failing reason.
    """
    claims = _decode_claims(id_token)

    if nonce is not None and claims.get("nonce") != nonce:
        return TokenValidationResult.INVALID_NONCE

    if not _does_aud_or_azp_match_client_id(claims, client_id):
        return TokenValidationResult.INVALID_AUDIENCE_OR_AZP

    now = datetime.now(UTC)
    exp = _to_datetime(claims.get("exp"))
    if exp is None or exp < now:
        return TokenValidationResult.ID_TOKEN_EXPIRED

    if max_age is not None:
        auth_time = _to_datetime(claims.get("auth_time"))
        if auth_time is None or auth_time + timedelta(seconds=max_age) < now:
            return TokenValidationResult.MAX_AGE_EXCEEDED

    if claims.get("iss") != issuer:
        return TokenValidationResult.INVALID_ISSUER

    return TokenValidationResult.VALID


def validate_id_token_signature(id_token: str, keyset: JWKeySet | None) -> TokenValidationResult:
    """
    Validates the signature of an id token against the operator key set.

    The key is selected by the header's kid and alg. Key failures are reported as
    outcomes, never raised.

    Args:
        id_token: The compact serialized id token.
        keyset: Key set from the operator's JWKS URL; None yields KEYSET_UNAVAILABLE.
    """
    if keyset is None:
        return TokenValidationResult.KEYSET_UNAVAILABLE

    try:
        header = decode_json_part(id_token, JWTPart.HEADER)
    except ValueError:
        header = {}
    alg = header.get("alg")
    kid = header.get("kid")

    key = keyset.get_matching(kid, alg)
    if key is None:
        return TokenValidationResult.NO_MATCHING_KEY

    last_split = id_token.rfind(".")
    if last_split < 0 or last_split == len(id_token) - 1:
        return TokenValidationResult.INVALID_SIGNATURE

    try:
        is_valid = key.verify(id_token, alg)
    except UnsupportedAlgorithmError:
        return TokenValidationResult.UNSUPPORTED_ALGORITHM
    except InvalidKeyError:
        return TokenValidationResult.MALFORMED_KEY

    return TokenValidationResult.VALID if is_valid else TokenValidationResult.INVALID_SIGNATURE


def validate_id_token(
    id_token: str | None,
    client_id: str,
    issuer: str | None,
    nonce: str | None,
    max_age: int | None,
    keyset: JWKeySet | None,
    version: str | None,
) -> TokenValidationResult:
    """
    Validates an id token's claims and signature.

    WARNING: providers serving the R1 version (``mc_v1.1``) are known to violate strict
    claim rules and to publish unusable key sets. For them every claim or signature
    failure is reported as VALIDATION_SKIPPED instead of the specific reason. This is a
    deliberate compatibility carve-out that weakens the guarantee for that version;
    callers must apply their own risk policy to VALIDATION_SKIPPED.

    Emits an OpenTelemetry span `validate_id_token` with the outcome as attribute.

    Args:
        id_token: The compact serialized id token.
        client_id: Client id validated against aud and azp.
        issuer: Issuer validated against iss.
        nonce: Nonce validated against the nonce claim.
        max_age: Max age used to validate auth_time, if supplied.
        keyset: Key set used to validate the signature.
        version: Mobile Connect version served by the provider.

    Returns:
        TokenValidationResult: Exactly one outcome.
    """
    with tracer.start_as_current_span("validate_id_token") as span:
        result = _validate_id_token(id_token, client_id, issuer, nonce, max_age, keyset, version)
        span.set_attribute("mobileconnect.id_token.validation", result.value)
        if result is not TokenValidationResult.VALID:
            logger.warning(f"Id token validation result: {result}")
        return result


def _validate_id_token(
    id_token: str | None,
    client_id: str,
    issuer: str | None,
    nonce: str | None,
    max_age: int | None,
    keyset: JWKeySet | None,
    version: str | None,
) -> TokenValidationResult:
    if not id_token:
        return TokenValidationResult.ID_TOKEN_MISSING

    is_r1_source = version == SupportedVersions.R1
    claims_result = validate_id_token_claims(id_token, client_id, issuer, nonce, max_age)
    if claims_result is not TokenValidationResult.VALID and not is_r1_source:
        return claims_result

    signature_result = validate_id_token_signature(id_token, keyset)
    if is_r1_source and (
        claims_result is not TokenValidationResult.VALID or signature_result is not TokenValidationResult.VALID
    ):
        return TokenValidationResult.VALIDATION_SKIPPED

    return signature_result


def validate_access_token(token_response: RequestTokenResponseData | None) -> TokenValidationResult:
    """
    Validates the access token of a token response.

    Returns:
        TokenValidationResult: ACCESS_TOKEN_MISSING if empty, ACCESS_TOKEN_EXPIRED if the
        expiry has passed, VALID otherwise.
    """
    if token_response is None or not token_response.access_token:
        return TokenValidationResult.ACCESS_TOKEN_MISSING

    if token_response.expiry is not None and token_response.expiry <= datetime.now(UTC):
        return TokenValidationResult.ACCESS_TOKEN_EXPIRED

    return TokenValidationResult.VALID
