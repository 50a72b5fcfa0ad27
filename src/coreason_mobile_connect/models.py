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
Data models for the coreason-mobile-connect package.
"""

import json
import re
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Annotated, Any, TypeVar

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    PrivateAttr,
    SecretStr,
    field_validator,
    model_validator,
)

from coreason_mobile_connect.constants import LinkRel
from coreason_mobile_connect.utils.jwt import JWTPart, decode_part, is_valid_format
from coreason_mobile_connect.utils.logger import logger

ModelT = TypeVar("ModelT", bound=BaseModel)


def _from_epoch_seconds(seconds: float) -> datetime:
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError) as e:
        # Raised as ValueError so pydantic reports a ValidationError
        raise ValueError(f"Timestamp {seconds} is out of range") from e


def _parse_unix_timestamp(v: Any) -> Any:
    if v is None or (isinstance(v, str) and not v.strip()):
        return None
    if isinstance(v, datetime):
        return v if v.tzinfo else v.replace(tzinfo=UTC)
    if isinstance(v, (int, float)):
        return _from_epoch_seconds(v)
    if isinstance(v, str):
        try:
            seconds = float(v)
        except ValueError:
            return v
        return _from_epoch_seconds(seconds)
    return v


def _serialize_unix_timestamp(v: datetime | None) -> int | None:
    return None if v is None else round(v.timestamp())


# Epoch seconds on the wire, aware UTC datetime in Python
UnixTimestamp = Annotated[
    datetime | None,
    BeforeValidator(_parse_unix_timestamp),
    PlainSerializer(_serialize_unix_timestamp, return_type=int | None),
]


class TokenValidationResult(StrEnum):
    """
    Outcome of an id token or access token validation. Exactly one reason is reported.
    """

    VALID = "valid"
    VALIDATION_SKIPPED = "id_token_validation_skipped"
    ID_TOKEN_MISSING = "id_token_missing"
    ACCESS_TOKEN_MISSING = "access_token_missing"
    ACCESS_TOKEN_EXPIRED = "access_token_expired"
    ID_TOKEN_EXPIRED = "id_token_expired"
    INVALID_NONCE = "invalid_nonce"
    INVALID_AUDIENCE_OR_AZP = "invalid_aud_and_azp"
    INVALID_ISSUER = "invalid_issuer"
    MAX_AGE_EXCEEDED = "max_age_passed"
    NO_MATCHING_KEY = "no_matching_key"
    UNSUPPORTED_ALGORITHM = "unsupported_algorithm"
    MALFORMED_KEY = "key_misformed"
    INVALID_SIGNATURE = "invalid_signature"
    KEYSET_UNAVAILABLE = "jwks_error"

    @property
    def is_valid(self) -> bool:
        return self is TokenValidationResult.VALID


class ErrorResponse(BaseModel):
    """
    Error reported by the discovery service or an operator endpoint.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    error: str
    error_description: str | None = None
    error_uri: str | None = None


class OperatorUrls(BaseModel):
    """
    Operator endpoint URLs resolved from a discovery response.

    The only mutable part of a discovery response: provider metadata may override these fields.
    """

    model_config = ConfigDict(validate_assignment=True)

    authorization_url: str | None = None
    request_token_url: str | None = None
    user_info_url: str | None = None
    premium_info_url: str | None = None
    jwks_url: str | None = None
    refresh_token_url: str | None = None
    revoke_token_url: str | None = None
    provider_metadata_url: str | None = None
    scope_url: str | None = None

    def urls(self) -> list[str | None]:
        """Returns all nine URLs, in the same order as `rels()`."""
        return [
            self.authorization_url,
            self.request_token_url,
            self.user_info_url,
            self.premium_info_url,
            self.jwks_url,
            self.refresh_token_url,
            self.revoke_token_url,
            self.provider_metadata_url,
            self.scope_url,
        ]

    @staticmethod
    def rels() -> list[str]:
        return [
            LinkRel.AUTHORIZATION,
            LinkRel.TOKEN,
            LinkRel.USERINFO,
            LinkRel.PREMIUMINFO,
            LinkRel.JWKS,
            LinkRel.TOKENREFRESH,
            LinkRel.TOKENREVOKE,
            LinkRel.OPENID_CONFIGURATION,
            LinkRel.SCOPE,
        ]


class ProviderMetadata(BaseModel):
    """
    Provider metadata from the operator's openid-configuration document.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str | None = None
    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    userinfo_endpoint: str | None = None
    premiuminfo_endpoint: str | None = None
    jwks_uri: str | None = None
    refresh_endpoint: str | None = None
    revoke_endpoint: str | None = None
    scopes_supported: list[str] = Field(default_factory=list)
    mc_version: list[str] = Field(default_factory=list, description="Mobile Connect versions served by the provider.")

    @field_validator("scopes_supported", "mc_version", mode="before")
    @classmethod
    def ensure_list_of_strings(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return v.split()
        if isinstance(v, (list, tuple)):
            return [str(item) for item in v if item is not None]
        return []


class DiscoveryResponse(BaseModel):
    """
    Snapshot of a discovery call: the serving operator's endpoints, credentials and provider version.

    Frozen apart from `operator_urls`, which provider metadata may override in place.
    """

    model_config = ConfigDict(frozen=True)

    response_code: int = 200
    ttl: UnixTimestamp = None
    subscriber_id: str | None = None
    client_id: str | None = None
    client_secret: SecretStr | None = None
    client_name: str | None = None
    operator_selection_url: str | None = None
    operator_urls: OperatorUrls | None = None
    provider_metadata: ProviderMetadata | None = None
    provider_version: str | None = None
    error_response: ErrorResponse | None = None
    response_data: dict[str, Any] = Field(default_factory=dict)

    @property
    def requires_operator_selection(self) -> bool:
        return self.operator_urls is None and self.operator_selection_url is not None


class RequestTokenResponseData(BaseModel):
    """
    Token endpoint response body.

    `expiry` is derived from `expires_in` and the time the response was received when not given explicitly.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str | None = None
    token_type: str | None = None
    id_token: str | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    time_received: Annotated[datetime, BeforeValidator(_parse_unix_timestamp)] = Field(
        default_factory=lambda: datetime.now(UTC)
    )
    expiry: UnixTimestamp = None

    @model_validator(mode="after")
    def set_expiry(self) -> "RequestTokenResponseData":
        if self.expiry is None and self.expires_in is not None:
            try:
                self.expiry = self.time_received + timedelta(seconds=self.expires_in)
            except OverflowError as e:
                raise ValueError(f"expires_in {self.expires_in} is out of range") from e
        return self

    def __repr__(self) -> str:
        # Tokens MUST NOT end up in logs
        return (
            f"RequestTokenResponseData(token_type={self.token_type!r}, "
            f"access_token={'<REDACTED>' if self.access_token else None}, "
            f"id_token={'<REDACTED>' if self.id_token else None}, "
            f"expiry={self.expiry!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()


class RequestTokenResponse(BaseModel):
    """
    Result of a token request, with the validation outcome of both tokens once validated.
    """

    response_code: int
    response_data: RequestTokenResponseData | None = None
    error_response: ErrorResponse | None = None
    decoded_id_token_payload: dict[str, Any] | None = None
    id_token_validation_result: TokenValidationResult | None = None
    access_token_validation_result: TokenValidationResult | None = None


class IdentityInfoType(StrEnum):
    USER_INFO = "userinfo"
    PREMIUM_INFO = "premiuminfo"


_AUTH_PARAM = re.compile(r'(\w+)="([^"]*)"')


def parse_authenticate_header(header: str | None) -> ErrorResponse:
    """
    Builds an ErrorResponse from a ``WWW-Authenticate: Bearer error="...", error_description="..."`` header.
    """
    if not header:
        return ErrorResponse(error="unknown_error", error_description="No error information returned by the server")
    params = dict(_AUTH_PARAM.findall(header))
    return ErrorResponse(
        error=params.get("error", "unknown_error"),
        error_description=params.get("error_description"),
        error_uri=params.get("error_uri"),
    )


class IdentityResponse(BaseModel):
    """
    Response of the user info or premium info endpoint.

    `response_json` always holds JSON text: JWT-encoded responses are decoded, and a
    response in any other format is replaced by a synthetic ``invalid_format`` error payload.
    """

    response_code: int = 0
    info_type: IdentityInfoType | None = None
    response_json: str | None = None
    error_response: ErrorResponse | None = None
    _converted: Any = PrivateAttr(default=None)

    @classmethod
    def from_json(cls, response_json: str | None, info_type: IdentityInfoType | None = None) -> "IdentityResponse":
        return cls(info_type=info_type, response_json=response_json, error_response=_error_from_json(response_json))

    @classmethod
    def from_http(
        cls,
        status_code: int,
        content: str,
        headers: Mapping[str, str],
        info_type: IdentityInfoType,
    ) -> "IdentityResponse":
        """
        Builds the response from a raw HTTP exchange with the identity endpoint.

        Args:
            status_code: HTTP status code.
            content: Response body.
            headers: Response headers (``WWW-Authenticate`` is read on failure).
            info_type: Which endpoint was called.
        """
        if status_code < 400:
            response_json = extract_json(content, info_type)
            return cls(
                response_code=status_code,
                info_type=info_type,
                response_json=response_json,
                error_response=_error_from_json(response_json),
            )

        return cls(
            response_code=status_code,
            info_type=info_type,
            error_response=parse_authenticate_header(headers.get("WWW-Authenticate")),
        )

    def response_data_as(self, model: type[ModelT]) -> ModelT | None:
        """
        Converts `response_json` to `model`. The last conversion is cached per model type.
        """
        if not self.response_json:
            logger.debug(f"Defaulting {model.__name__} because the identity response is empty")
            return None

        if isinstance(self._converted, model):
            return self._converted

        converted = model.model_validate_json(self.response_json)
        self._converted = converted
        return converted


def extract_json(content: str | None, info_type: IdentityInfoType) -> str | None:
    """
    Normalizes an identity payload to JSON text.
    """
    if not content:
        return content

    if "{" in content:
        logger.info(f"Identity received as JSON ({info_type})")
        return content

    if is_valid_format(content):
        logger.info(f"Identity received as JWT ({info_type})")
        try:
            return decode_part(content, JWTPart.CLAIMS)
        except ValueError:
            logger.warning(f"Identity JWT claims could not be decoded ({info_type})")

    return json.dumps(
        {
            "error": "invalid_format",
            "error_description": f"Received {info_type} response that is not JSON or JWT format",
        }
    )


def _error_from_json(response_json: str | None) -> ErrorResponse | None:
    if not response_json:
        return None
    try:
        data = json.loads(response_json)
    except json.JSONDecodeError:
        return ErrorResponse(error="invalid_format", error_description="Identity response is not valid JSON")
    if isinstance(data, dict) and data.get("error"):
        return ErrorResponse(
            error=str(data["error"]),
            error_description=data.get("error_description") or data.get("description"),
        )
    return None


class MobileConnectRequestOptions(BaseModel):
    """
    Optional parameters for discovery and authorization requests.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    scope: str | None = None
    acr_values: str | None = None
    max_age: int | None = Field(default=None, ge=0)
    prompt: str | None = None
    display: str | None = None
    ui_locales: str | None = None
    claims_locales: str | None = None
    login_hint: str | None = None
    id_token_hint: str | None = None
    context: str | None = None
    binding_message: str | None = None
    client_ip: str | None = None


class ResponseType(StrEnum):
    """
    Next action for the caller after a MobileConnectInterface call.
    """

    OPERATOR_SELECTION = "operator_selection"
    START_AUTHENTICATION = "start_authentication"
    AUTHENTICATION = "authentication"
    COMPLETE = "complete"
    ERROR = "error"


class MobileConnectStatus(BaseModel):
    """
    Uniform result of every MobileConnectInterface operation.

    This model is frozen; the orchestrator uses `model_copy` to attach the sdk_session.
    """

    model_config = ConfigDict(frozen=True)

    response_type: ResponseType
    url: str | None = None
    state: str | None = None
    nonce: str | None = None
    sdk_session: str | None = None
    discovery_response: DiscoveryResponse | None = None
    token_response: RequestTokenResponse | None = None
    identity_response: IdentityResponse | None = None
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def operator_selection(cls, url: str | None) -> "MobileConnectStatus":
        return cls(response_type=ResponseType.OPERATOR_SELECTION, url=url)

    @classmethod
    def start_authentication(cls, discovery_response: DiscoveryResponse) -> "MobileConnectStatus":
        return cls(response_type=ResponseType.START_AUTHENTICATION, discovery_response=discovery_response)

    @classmethod
    def authentication(cls, url: str, state: str, nonce: str) -> "MobileConnectStatus":
        return cls(response_type=ResponseType.AUTHENTICATION, url=url, state=state, nonce=nonce)

    @classmethod
    def complete(
        cls,
        token_response: RequestTokenResponse | None = None,
        identity_response: IdentityResponse | None = None,
    ) -> "MobileConnectStatus":
        return cls(
            response_type=ResponseType.COMPLETE,
            token_response=token_response,
            identity_response=identity_response,
        )

    @classmethod
    def error(cls, code: str, message: str | None = None) -> "MobileConnectStatus":
        return cls(response_type=ResponseType.ERROR, error_code=code, error_message=message)

    @classmethod
    def from_error_response(cls, error_response: ErrorResponse) -> "MobileConnectStatus":
        return cls.error(error_response.error, error_response.error_description)
