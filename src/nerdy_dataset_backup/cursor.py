from __future__ import annotations

from datetime import datetime
import base64
import binascii
import hashlib
import hmac

from .errors import InvalidCursorError
from .timestamps import format_timestamp, parse_timestamp

_CURSOR_VERSION = "v1"
_SEPARATOR = "|"


class CursorCodec:
    """Encodes pagination positions as signed, URL-safe opaque tokens.

    A token is ``base64url("v1|<iso timestamp>|<hex hmac>")``. Decoding checks
    the version, the signature and the timestamp format, so only tokens made
    by :meth:`encode` with the same secret are accepted. Only timezone-aware
    timestamps can be encoded, so ``decode(encode(t)) == t`` always holds.
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("cursor secret must not be empty")
        self._key = secret.encode("utf-8")

    def encode(self, timestamp: datetime) -> str:
        if timestamp.tzinfo is None:
            raise ValueError("cursor timestamps must be timezone-aware")
        position = format_timestamp(timestamp)
        payload = _SEPARATOR.join((_CURSOR_VERSION, position, self._sign(position)))
        return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")

    def decode(self, token: str) -> datetime:
        if not token or not token.strip():
            raise InvalidCursorError("cursor must not be empty")

        try:
            raw = base64.b64decode(token.encode("ascii"), altchars=b"-_", validate=True)
            payload = raw.decode("utf-8")
        except (binascii.Error, UnicodeError, ValueError) as error:
            raise InvalidCursorError(f"cursor is not a valid token: {token!r}") from error

        if base64.urlsafe_b64encode(raw).decode("ascii") != token:
            raise InvalidCursorError(f"cursor is not canonically encoded: {token!r}")

        parts = payload.split(_SEPARATOR)
        if len(parts) != 3 or parts[0] != _CURSOR_VERSION:
            raise InvalidCursorError(f"cursor has an unsupported format: {token!r}")

        _, position, signature = parts
        if not hmac.compare_digest(signature, self._sign(position)):
            raise InvalidCursorError(f"cursor signature mismatch: {token!r}")

        try:
            timestamp = parse_timestamp(position)
        except ValueError as error:
            raise InvalidCursorError(f"cursor holds an invalid timestamp: {token!r}") from error

        if format_timestamp(timestamp) != position:
            raise InvalidCursorError(f"cursor timestamp is not canonical: {token!r}")
        return timestamp

    def _sign(self, position: str) -> str:
        return hmac.new(self._key, position.encode("utf-8"), hashlib.sha256).hexdigest()
