from __future__ import annotations

import asyncio
import hmac
from typing import Any

from security_service.auth.api_key import decode_api_key
from security_service.auth.jwt import ACCESS, REFRESH, TokenCodec, account_from_claims
from security_service.auth.password import CredentialVerifier
from security_service.configs.logging_config import get_logger
from security_service.domain.entities.account import Account
from security_service.domain.entities.application import Application
from security_service.domain.entities.grant import (
    AccountSummary,
    ClientCredentialsGrant,
    GroupSummary,
    PasswordGrant,
    RefreshGrant,
    RevokeGrant,
    TokenResponse,
)
from security_service.domain.entities.tenant import Group
from security_service.errors import (
    AuthenticationFailure,
    ConfigurationError,
    TokenExpired,
)
from security_service.repositories.ports import AccountStore, ApiKeyStore, GroupStore
from security_service.repositories.token_cache import InsertResult, RevocationCache
from security_service.services.directory_resolver import DirectoryResolver, TenantContext

log = get_logger(__name__)


def intersect_scopes(requested: list[str], granted: list[str]) -> list[str]:
    """Requested scopes also present in `granted`, in request order, no repeats."""
    allowed = set(granted)
    out: list[str] = []
    for scope in requested:
        if scope in allowed and scope not in out:
            out.append(scope)
    return out


class GrantEngine:
    """
    Runs the four grant flows for an application.

    Every flow checks its preconditions in a fixed order and stops at the
    first failure; a response is only returned once the tokens are minted and
    handed to the revocation cache.
    """

    def __init__(
        self,
        *,
        resolver: DirectoryResolver,
        accounts: AccountStore,
        groups: GroupStore,
        api_keys: ApiKeyStore,
        cache: RevocationCache,
        codec: TokenCodec,
        verifier: CredentialVerifier,
        environment: str,
    ):
        self._resolver = resolver
        self._accounts = accounts
        self._groups = groups
        self._api_keys = api_keys
        self._cache = cache
        self._codec = codec
        self._verifier = verifier
        self._environment = environment

    async def handle(
        self,
        application: Application,
        request: PasswordGrant | ClientCredentialsGrant | RefreshGrant | RevokeGrant,
    ) -> TokenResponse | None:
        if isinstance(request, PasswordGrant):
            return await self.password_grant(
                application, request.directory_id, request.username, request.password
            )
        if isinstance(request, ClientCredentialsGrant):
            return await self.client_credentials_grant(application, request.api_key, request.scopes)
        if isinstance(request, RefreshGrant):
            return await self.refresh_grant(application, request.refresh_token)
        if isinstance(request, RevokeGrant):
            await self.revoke(request.access_token)
            return None
        raise ValueError(f"Unknown grant type: {type(request).__name__}")

    # ----------------------------
    # Grants
    # ----------------------------

    async def password_grant(
        self,
        application: Application,
        directory_id: str,
        email_or_username: str,
        password: str,
    ) -> TokenResponse:
        log.info("grant.password start app=%s directory=%s", application.id, directory_id)
        self._require_enabled(application)

        tenant = await self._resolver.resolve_tenant(application.id, directory_id)

        account = await self._resolver.resolve(tenant.directory.id, email_or_username)
        if account is None or not account.enabled:
            log.info("grant.password rejected app=%s reason=principal", application.id)
            raise AuthenticationFailure()

        matches = await asyncio.to_thread(self._verifier.verify, password, account.password)
        if not matches:
            log.info("grant.password rejected app=%s reason=secret", application.id)
            raise AuthenticationFailure()

        groups = await self._groups.enabled_groups_for_account(account.id)
        scope = " ".join(g.name for g in groups)
        claims = self._claims(application, account, tenant, scope, "password")

        access_token = self._codec.mint(
            claims, application.signing_key, ACCESS, application.access_token_ttl
        )
        refresh_token = self._codec.mint(claims, application.signing_key, REFRESH)
        await self._cache.put_pair(
            application.signing_key,
            access_token,
            refresh_token,
            refresh_ttl=application.refresh_token_ttl,
        )

        log.info("grant.password ok app=%s account=%s", application.id, account.id)
        return TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=application.access_token_ttl,
            scope=scope,
            account=self._summary(account, groups),
        )

    async def client_credentials_grant(
        self,
        application: Application,
        api_key_token: str,
        scopes: list[str],
    ) -> TokenResponse:
        log.info("grant.client_credentials start app=%s", application.id)
        self._require_enabled(application)

        public, private = decode_api_key(api_key_token)
        api_key = await self._api_keys.find_by_public(public)
        if api_key is None:
            log.info("grant.client_credentials rejected app=%s reason=key", application.id)
            raise AuthenticationFailure("invalid api key")

        if not hmac.compare_digest(api_key.private.encode("utf-8"), private.encode("utf-8")):
            log.info("grant.client_credentials rejected app=%s reason=secret", application.id)
            raise AuthenticationFailure("invalid api key")

        account = await self._accounts.find_by_id(api_key.account_id)
        if account is None or not account.enabled:
            raise AuthenticationFailure()

        tenant = await self._resolver.resolve_tenant(application.id, account.directory_id)

        groups = await self._groups.enabled_groups_for_account(account.id)
        allowed = intersect_scopes(scopes, [g.name for g in groups])
        scope = " ".join(allowed)
        claims = self._claims(application, account, tenant, scope, "client_credentials")

        access_token = self._codec.mint(
            claims, application.signing_key, ACCESS, application.access_token_ttl
        )
        await self._cache.put_access_only(application.signing_key, access_token)

        log.info(
            "grant.client_credentials ok app=%s account=%s requested=%s granted=%s",
            application.id,
            account.id,
            len(scopes),
            len(allowed),
        )
        return TokenResponse(
            access_token=access_token,
            expires_in=application.access_token_ttl,
            scope=scope,
        )

    async def refresh_grant(self, application: Application, refresh_token: str) -> TokenResponse:
        log.info("grant.refresh start app=%s", application.id)

        if await self._cache.lookup_refresh(refresh_token) is None:
            log.info("grant.refresh rejected app=%s reason=not_cached", application.id)
            raise TokenExpired()

        # TokenExpired / TokenInvalid propagate as-is
        verified = self._codec.verify(refresh_token, application.signing_key)

        self._require_enabled(application)

        account = await self._accounts.find_by_id(str(account_from_claims(verified.claims)))
        if account is None or not account.enabled:
            log.info("grant.refresh rejected app=%s reason=principal", application.id)
            raise AuthenticationFailure("account does not exist or is invalid")

        tenant = await self._resolver.resolve_tenant(application.id, account.directory_id)

        groups = await self._groups.enabled_groups_for_account(account.id)
        scope = " ".join(g.name for g in groups)
        claims = self._claims(application, account, tenant, scope, "password")

        access_token = self._codec.mint(
            claims, application.signing_key, ACCESS, application.access_token_ttl
        )
        inserted = await self._cache.put_pair(
            application.signing_key,
            access_token,
            refresh_token,
            refresh_ttl=application.refresh_token_ttl,
            reinsert=True,
        )
        if inserted.refresh is InsertResult.SKIPPED_REVOKED:
            log.info("grant.refresh rejected app=%s reason=revoked_during_refresh", application.id)
            raise TokenExpired()

        log.info("grant.refresh ok app=%s account=%s", application.id, account.id)
        return TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=application.access_token_ttl,
            scope=scope,
            account=self._summary(account, groups),
        )

    async def revoke(self, access_token: str) -> None:
        """Revoke an access token and its paired refresh token. Idempotent."""
        revoked = await self._cache.revoke_access(access_token)
        log.info("grant.revoke done revoked=%s", revoked)

    async def authenticate_token(self, access_token: str) -> bool:
        return await self._cache.is_live(access_token)

    # ----------------------------
    # Helpers
    # ----------------------------

    @staticmethod
    def _require_enabled(application: Application) -> None:
        if not application.enabled:
            log.info("grant.rejected app=%s reason=application_disabled", application.id)
            raise ConfigurationError("application is disabled")

    def _claims(
        self,
        application: Application,
        account: Account,
        tenant: TenantContext,
        scope: str,
        grant: str,
    ) -> dict[str, Any]:
        return {
            "iss": application.id,
            "sub": account.id,
            "scope": scope,
            "account": account.id,
            "env": self._environment,
            "organization": {
                "href": tenant.organization.id,
                "nameKey": tenant.organization.name_key,
            },
            "grant": grant,
        }

    @staticmethod
    def _summary(account: Account, groups: list[Group]) -> AccountSummary:
        return AccountSummary(
            href=account.id,
            status=account.status,
            email=account.email,
            given_name=account.given_name,
            surname=account.surname,
            scopes=[GroupSummary(href=g.id, name=g.name, status=g.status) for g in groups],
        )
