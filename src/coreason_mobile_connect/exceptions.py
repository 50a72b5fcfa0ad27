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
Custom exceptions for the coreason-mobile-connect package.
"""


class MobileConnectError(Exception):
    """Base exception for all coreason-mobile-connect errors."""


class HttpFailureError(MobileConnectError):
    """Raised when a request to the discovery service or an operator endpoint fails at the transport level."""


class OversizedResponseError(MobileConnectError):
    """Raised when an HTTP response is too large."""


class SecurityError(MobileConnectError):
    """Raised when a security violation is detected (e.g. SSRF to a private address)."""


class InvalidKeyError(MobileConnectError):
    """Raised when a JSON Web Key cannot be imported or does not fit the requested algorithm."""


class UnsupportedAlgorithmError(MobileConnectError):
    """Raised when a token is signed with an algorithm the key set cannot verify."""


class AuthenticationCancelledError(MobileConnectError):
    """
    Raised when a headless authentication is cancelled by the caller.

    Never converted into an error status: the orchestrator lets it propagate.
    """


class HeadlessTimeoutError(MobileConnectError):
    """Raised when the authenticating user does not respond before the headless timeout."""
