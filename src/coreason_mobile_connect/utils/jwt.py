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
Helpers for reading compact JWTs without verifying them.
"""

import binascii
from enum import IntEnum
from typing import Any

from authlib.common.encoding import json_loads, to_bytes, to_unicode, urlsafe_b64decode

__all__ = ["JWTPart", "decode_part", "decode_json_part", "is_valid_format"]


class JWTPart(IntEnum):
    HEADER = 0
    CLAIMS = 1
    SIGNATURE = 2


def decode_part(token: str, part: JWTPart) -> str:
    """
    Base64url-decodes one segment of a compact JWT.

    Args:
        token: The compact serialized token.
        part: The segment to decode (header or claims).

    Returns:
        str: The decoded JSON text.

    Raises:
        ValueError: If the token does not have three segments or the segment is not valid base64url/UTF-8.
    """
    segments = token.split(".")
    if len(segments) != 3:
        raise ValueError("JWT must have exactly three segments")
    try:
        return to_unicode(urlsafe_b64decode(to_bytes(segments[part])))
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"Unable to decode JWT {part.name.lower()}: {e}") from e


def decode_json_part(token: str, part: JWTPart) -> dict[str, Any]:
    """
    Decodes a JWT segment and parses it as a JSON object.

    Raises:
        ValueError: If decoding fails or the segment is not a JSON object.
    """
    data = json_loads(decode_part(token, part))
    if not isinstance(data, dict):
        raise ValueError(f"JWT {part.name.lower()} is not a JSON object")
    return data


def is_valid_format(token: str | None) -> bool:
    """Returns True if `token` looks like a compact JWT with a decodable header."""
    if not token or token.count(".") != 2:
        return False
    try:
        decode_json_part(token, JWTPart.HEADER)
    except ValueError:
        return False
    return True
