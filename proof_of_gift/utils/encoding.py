"""Base64 helpers for token parts and stored key material."""

from __future__ import annotations

import base64
import binascii
import re

_B64URL_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def b64url_encode(data: bytes) -> str:
    """Encode bytes as base64url with the ``=`` padding stripped."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(value: str) -> bytes:
    """Decode unpadded base64url, raising ``ValueError`` on any foreign character."""
    if not value or not _B64URL_RE.match(value):
        raise ValueError("not a base64url string")
    if len(value) % 4 == 1:
        raise ValueError("invalid base64url length")
    padded = value + "=" * (-len(value) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except binascii.Error as exc:
        raise ValueError(str(exc)) from exc


def b64_encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64_decode(value: str) -> bytes:
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(str(exc)) from exc


def short_token(token: str, keep: int = 12) -> str:
    """Shorten a token for log lines so bearer values never land in logs whole."""
    if len(token) <= keep:
        return token
    return f"{token[:keep]}..."
