from __future__ import annotations

import base64
import secrets
from datetime import datetime

from pydantic import BaseModel, Field

from security_service.domain.entities.application import ENABLED, _new_id


def _key_component() -> str:
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


class Account(BaseModel):
    """
    Mongo document model for `accounts` (the authenticating principal).

    `password` holds the bcrypt hash, never the plaintext.
    """

    id: str = Field(default_factory=_new_id)
    directory_id: str
    email: str
    given_name: str
    surname: str
    username: str | None = None
    password: str | None = None
    title: str | None = None
    middle_name: str | None = None
    address1: str | None = None
    address2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None
    phone: str | None = None
    timezone: str | None = None
    status: str = ENABLED
    created: datetime | None = None

    @property
    def enabled(self) -> bool:
        return self.status == ENABLED


class ApiKey(BaseModel):
    id: str = Field(default_factory=_new_id)
    account_id: str
    public: str = Field(default_factory=_key_component)
    private: str = Field(default_factory=_key_component)
    created: datetime | None = None
