"""Utility helpers for encoding and time operations."""

from .encoding import b64_decode, b64_encode, b64url_decode, b64url_encode, short_token
from .time import seconds_since, utc_now

__all__ = ["b64url_encode", "b64url_decode", "b64_encode", "b64_decode", "short_token", "seconds_since", "utc_now"]
