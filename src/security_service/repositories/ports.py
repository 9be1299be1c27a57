"""Read contracts the grant engine needs from the tenant stores.

The Mongo repositories in this package satisfy them; tests use in-memory
implementations.
"""

from __future__ import annotations

from typing import Protocol

from security_service.domain.entities.account import Account, ApiKey
from security_service.domain.entities.tenant import Directory, Group, Organization


class AccountStore(Protocol):
    async def find_by_id(self, account_id: str) -> Account | None: ...

    async def find_by_email_in_directory(self, email: str, directory_id: str) -> Account | None: ...

    async def find_by_username_in_directory(
        self, username: str, directory_id: str
    ) -> Account | None: ...


class DirectoryStore(Protocol):
    async def find_by_id(self, directory_id: str) -> Directory | None: ...

    async def belongs_to_application(self, directory_id: str, application_id: str) -> bool: ...


class OrganizationStore(Protocol):
    async def find_by_id(self, organization_id: str) -> Organization | None: ...


class ApiKeyStore(Protocol):
    async def find_by_public(self, public: str) -> ApiKey | None: ...


class GroupStore(Protocol):
    async def enabled_groups_for_account(self, account_id: str) -> list[Group]: ...
