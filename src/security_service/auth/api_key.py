from __future__ import annotations

import base64
import binascii

from security_service.domain.entities.account import ApiKey
from security_service.errors import AuthenticationFailure


def tokenize(api_key: ApiKey) -> str:
    """Transport encoding handed to API clients: base64("public:private")."""
    return base64.b64encode(f"{api_key.public}:{api_key.private}".encode("utf-8")).decode("ascii")


def decode_api_key(token: str) -> tuple[str, str]:
    """Split a transport-encoded key into (public, private) on the first colon."""
    try:
        raw = base64.b64decode(token, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise AuthenticationFailure("invalid api key") from e

    public, sep, private = raw.partition(":")
    if not sep or not public:
        raise AuthenticationFailure("invalid api key")
    return public, private
