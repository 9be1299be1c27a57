from __future__ import annotations

from dataclasses import dataclass

from security_service.configs.logging_config import get_logger
from security_service.domain.entities.account import Account
from security_service.domain.entities.tenant import Directory, Organization
from security_service.errors import ConfigurationError
from security_service.repositories.ports import AccountStore, DirectoryStore, OrganizationStore

log = get_logger(__name__)


@dataclass(frozen=True)
class TenantContext:
    directory: Directory
    organization: Organization


class DirectoryResolver:
    """
    Resolves tenants and principals for the grant flows.

    Principals are looked up by email then username in the requested
    directory, then the same two lookups in the primary directory, so one
    "house" directory can authenticate against any application's directory.
    """

    def __init__(
        self,
        accounts: AccountStore,
        directories: DirectoryStore,
        organizations: OrganizationStore,
        primary_directory_id: str | None = None,
    ):
        self._accounts = accounts
        self._directories = directories
        self._organizations = organizations
        self._primary_directory_id = primary_directory_id

    async def resolve_tenant(
        self, application_id: str, directory: Directory | str | None
    ) -> TenantContext:
        if isinstance(directory, str):
            directory = await self._directories.find_by_id(directory)

        if directory is None:
            raise ConfigurationError("directory does not exist")

        if not await self._directories.belongs_to_application(directory.id, application_id):
            log.info("tenant.not_linked app=%s directory=%s", application_id, directory.id)
            raise ConfigurationError("directory does not belong to application")

        if not directory.enabled:
            raise ConfigurationError("directory is disabled or does not exist")

        organization = await self._organizations.find_by_id(directory.organization_id)
        if organization is None:
            raise ConfigurationError("organization does not exist")

        return TenantContext(directory=directory, organization=organization)

    async def _in_directory(self, directory_id: str, email_or_username: str) -> Account | None:
        account = await self._accounts.find_by_email_in_directory(email_or_username, directory_id)
        if account is None:
            account = await self._accounts.find_by_username_in_directory(
                email_or_username, directory_id
            )
        return account

    async def resolve(self, directory_id: str, email_or_username: str) -> Account | None:
        account = await self._in_directory(directory_id, email_or_username)
        if account is not None:
            return account

        if not self._primary_directory_id or self._primary_directory_id == directory_id:
            return None

        primary = await self._directories.find_by_id(self._primary_directory_id)
        if primary is None:
            log.error("tenant.primary_missing directory=%s", self._primary_directory_id)
            raise ConfigurationError("primary directory does not exist")

        account = await self._in_directory(primary.id, email_or_username)
        if account is not None:
            log.info("tenant.primary_fallback directory=%s primary=%s", directory_id, primary.id)
        return account
