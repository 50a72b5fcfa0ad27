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
Mobile Connect client: operator discovery, authorization, token validation and identity, behind one async interface.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .config import MobileConnectConfig
from .exceptions import AuthenticationCancelledError, MobileConnectError
from .interface import MobileConnectInterface
from .models import (
    DiscoveryResponse,
    MobileConnectRequestOptions,
    MobileConnectStatus,
    ResponseType,
    TokenValidationResult,
)
from .session_cache import CacheProtocol, MemoryCache

__all__ = [
    "AuthenticationCancelledError",
    "CacheProtocol",
    "DiscoveryResponse",
    "MemoryCache",
    "MobileConnectConfig",
    "MobileConnectError",
    "MobileConnectInterface",
    "MobileConnectRequestOptions",
    "MobileConnectStatus",
    "ResponseType",
    "TokenValidationResult",
]
