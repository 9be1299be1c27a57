from __future__ import annotations

import bcrypt

from security_service.configs.logging_config import get_logger

log = get_logger(__name__)


class CredentialVerifier:
    """One-way hashing of account secrets using bcrypt.

    `verify` never raises: a malformed or foreign hash simply does not match,
    so hash format problems are indistinguishable from a wrong secret.
    """

    def __init__(self, rounds: int = 13) -> None:
        self._rounds = rounds

    def hash(self, secret: str) -> str:
        if not secret:
            raise ValueError("password cannot be empty")
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(secret.encode("utf-8"), salt).decode("utf-8")

    def verify(self, secret: str, password_hash: str | None) -> bool:
        if not secret or not password_hash:
            return False
        try:
            return bcrypt.checkpw(secret.encode("utf-8"), password_hash.encode("utf-8"))
        except (ValueError, TypeError) as e:
            log.warning("credentials.verify_failed error=%s", str(e))
            return False
