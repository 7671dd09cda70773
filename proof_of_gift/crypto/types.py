"""Gift token datatypes."""

from __future__ import annotations

from dataclasses import dataclass

from ..config import TOKEN_SEPARATOR
from ..errors import MalformedToken
from ..utils.encoding import b64url_decode, b64url_encode


@dataclass(frozen=True)
class Token:
    """Serialized form: ``prefix . b64url(nonce) . b64url(signature)``."""

    prefix: str
    nonce: bytes
    signature: bytes

    def serialize(self) -> str:
        return TOKEN_SEPARATOR.join((self.prefix, b64url_encode(self.nonce), b64url_encode(self.signature)))

    def __str__(self) -> str:
        return self.serialize()

    @classmethod
    def parse(cls, value: str, *, prefix: str) -> "Token":
        if not isinstance(value, str) or not value:
            raise MalformedToken("token must be a non-empty string")

        parts = value.strip().split(TOKEN_SEPARATOR)
        if len(parts) != 3:
            raise MalformedToken(f"token must have exactly 3 parts, has {len(parts)}")
        if parts[0] != prefix:
            raise MalformedToken("token has an unexpected prefix")

        try:
            nonce = b64url_decode(parts[1])
            signature = b64url_decode(parts[2])
        except ValueError as exc:
            raise MalformedToken("token parts are not valid base64url") from exc
        return cls(prefix=parts[0], nonce=nonce, signature=signature)


@dataclass(frozen=True)
class VerifiedToken:
    token: str
    amount: int
    nonce: bytes
    valid: bool = True
