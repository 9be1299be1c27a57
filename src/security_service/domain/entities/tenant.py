from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, Field

from security_service.domain.entities.application import ENABLED, _new_id

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def name_key_for(name: str) -> str:
    """Lower-case, dash separated key used for organization lookups."""
    return _NON_SLUG.sub("-", name.lower()).strip("-")


class Organization(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    type: str
    status: str = ENABLED
    created: datetime | None = None

    @property
    def name_key(self) -> str:
        return name_key_for(self.name)


class Directory(BaseModel):
    """
    A tenant: isolated namespace of accounts and groups under an organization.

    Exactly one directory per organization has `is_default` set; see
    `security_service.services.default_directory`.
    """

    id: str = Field(default_factory=_new_id)
    organization_id: str
    name: str
    is_default: bool = False
    status: str = ENABLED
    created: datetime | None = None

    @property
    def enabled(self) -> bool:
        return self.status == ENABLED


class Group(BaseModel):
    id: str = Field(default_factory=_new_id)
    directory_id: str
    name: str
    status: str = ENABLED
    created: datetime | None = None
