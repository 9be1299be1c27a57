from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PasswordGrant(BaseModel):
    grant_type: Literal["password"] = "password"
    directory_id: str
    username: str  # email or username
    password: str


class ClientCredentialsGrant(BaseModel):
    grant_type: Literal["client_credentials"] = "client_credentials"
    api_key: str  # base64("public:private")
    scopes: list[str] = Field(default_factory=list)


class RefreshGrant(BaseModel):
    grant_type: Literal["refresh"] = "refresh"
    refresh_token: str


class RevokeGrant(BaseModel):
    grant_type: Literal["revoke"] = "revoke"
    access_token: str


GrantRequest = Annotated[
    Union[PasswordGrant, ClientCredentialsGrant, RefreshGrant, RevokeGrant],
    Field(discriminator="grant_type"),
]


class _Wire(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GroupSummary(_Wire):
    href: str
    name: str
    status: str


class AccountSummary(_Wire):
    href: str
    status: str
    email: str
    given_name: str
    surname: str
    scopes: list[GroupSummary] = Field(default_factory=list)


class TokenResponse(_Wire):
    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"
    expires_in: int
    scope: str
    account: AccountSummary | None = None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
