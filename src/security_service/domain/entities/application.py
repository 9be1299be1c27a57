from __future__ import annotations

import base64
import secrets
import uuid
from datetime import datetime

from pydantic import BaseModel, Field

ENABLED = "ENABLED"
DISABLED = "DISABLED"


def _new_id() -> str:
    return str(uuid.uuid4())


def _new_signing_key() -> str:
    return base64.b64encode(secrets.token_bytes(256)).decode("ascii")


class Application(BaseModel):
    """
    Mongo document model for `applications`.

    Tokens issued for the application are signed with `signing_key` and carry
    the application id as `iss` and header `kid`.
    """

    id: str = Field(default_factory=_new_id)
    name: str
    signing_key: str = Field(default_factory=_new_signing_key)
    access_token_ttl: int = 3600
    refresh_token_ttl: int = 5184000
    status: str = ENABLED
    created: datetime | None = None

    @property
    def enabled(self) -> bool:
        return self.status == ENABLED
