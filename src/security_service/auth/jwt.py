from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError

from security_service.configs.logging_config import get_logger
from security_service.errors import AuthError, TokenExpired, TokenInvalid
from security_service.utils.time_utils import epoch_seconds

log = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class VerifiedToken:
    header: dict[str, Any]
    claims: dict[str, Any]

    @property
    def kid(self) -> str | None:
        return self.header.get("kid")

    @property
    def subtype(self) -> str | None:
        return self.header.get("stt")

    @property
    def exp(self) -> int | None:
        return self.claims.get("exp")


class TokenCodec:
    """
    Mints and verifies the compact signed bearer tokens.

    Header: `kid` (issuing application id) and `stt` (`access` | `refresh`).
    Every token gets `iat` and a random `jti`, so two mints with identical
    claims still produce different strings. Only tokens minted with a ttl
    carry `exp`; refresh tokens are minted without one and their liveness is
    decided by the revocation cache.
    """

    def __init__(self, algorithm: str = "HS256", leeway_seconds: int = 0):
        self._alg = algorithm
        self._leeway = leeway_seconds

    def mint(
        self,
        claims: dict[str, Any],
        signing_key: str,
        subtype: str,
        ttl_seconds: int | None = None,
    ) -> str:
        now = int(epoch_seconds())
        body = dict(claims)
        body["iat"] = now
        body["jti"] = uuid.uuid4().hex
        if ttl_seconds is not None:
            body["exp"] = now + int(ttl_seconds)
        headers = {"kid": claims.get("iss"), "stt": subtype}
        return jwt.encode(body, signing_key, algorithm=self._alg, headers=headers)

    def verify(self, token: str, signing_key: str) -> VerifiedToken:
        options = {"verify_aud": False, "leeway": self._leeway}
        try:
            claims = jwt.decode(token, signing_key, algorithms=[self._alg], options=options)
            header = jwt.get_unverified_header(token)
        except ExpiredSignatureError as e:
            log.info("jwt.verify expired")
            raise TokenExpired() from e
        except JWTError as e:
            log.info("jwt.verify failed: %s", str(e))
            raise TokenInvalid() from e
        return VerifiedToken(header=header, claims=claims)

    def will_expire(self, token: str, signing_key: str, seconds: int) -> None:
        """Raise TokenExpired if `token` expires within the next `seconds`."""
        verified = self.verify(token, signing_key)
        if verified.exp is not None and verified.exp - seconds <= epoch_seconds():
            raise TokenExpired("token will expire")


def bearer_token(authorization: str | None) -> str:
    """Extract the token from an `Authorization: Bearer <token>` value."""
    if not authorization:
        raise AuthError("missing authorization header")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthError("invalid authorization header")
    return token


def scopes_from_claims(claims: dict[str, Any]) -> list[str]:
    scope = claims.get("scope")
    return scope.split(" ") if scope else []


def account_from_claims(claims: dict[str, Any]) -> str | None:
    return claims.get("account")


def env_from_claims(claims: dict[str, Any]) -> str | None:
    return claims.get("env")


def organization_from_claims(claims: dict[str, Any]) -> dict[str, Any] | None:
    return claims.get("organization")


def is_password_token(claims: dict[str, Any]) -> bool:
    return claims.get("grant") == "password"
