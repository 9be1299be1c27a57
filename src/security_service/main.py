from __future__ import annotations

from dataclasses import dataclass

from motor.motor_asyncio import AsyncIOMotorClient

from security_service.auth.jwt import TokenCodec
from security_service.auth.password import CredentialVerifier
from security_service.configs.logging_config import get_logger, setup_logging
from security_service.configs.settings import Settings, get_settings
from security_service.repositories.account_repository import AccountRepository
from security_service.repositories.api_key_repository import ApiKeyRepository
from security_service.repositories.application_repository import ApplicationRepository
from security_service.repositories.directory_repository import DirectoryRepository
from security_service.repositories.group_repository import GroupRepository
from security_service.repositories.mongo import get_mongo_client, get_mongo_db
from security_service.repositories.organization_repository import OrganizationRepository
from security_service.repositories.redis_client import RedisClient
from security_service.repositories.token_cache import RevocationCache
from security_service.services.directory_resolver import DirectoryResolver
from security_service.services.grant_engine import GrantEngine

log = get_logger(__name__)


@dataclass
class Runtime:
    settings: Settings
    mongo_client: AsyncIOMotorClient
    redis: RedisClient
    applications: ApplicationRepository
    organizations: OrganizationRepository
    directories: DirectoryRepository
    accounts: AccountRepository
    groups: GroupRepository
    api_keys: ApiKeyRepository
    cache: RevocationCache
    engine: GrantEngine

    async def ensure_indexes(self) -> None:
        log.info("startup.ensure_indexes begin")
        for repo in (
            self.applications,
            self.organizations,
            self.directories,
            self.accounts,
            self.groups,
            self.api_keys,
        ):
            await repo.ensure_indexes()
        log.info("startup.ensure_indexes done")

    async def close(self) -> None:
        log.info("shutdown.begin")
        await self.redis.close()
        self.mongo_client.close()
        log.info("shutdown.done")


async def create_runtime(settings: Settings | None = None) -> Runtime:
    """Build the connection handles, stores, cache and grant engine once."""
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    mongo_client = get_mongo_client(settings)
    mongo_db = get_mongo_db(mongo_client, settings)
    redis_client = RedisClient(settings)
    await redis_client.connect()

    applications = ApplicationRepository(mongo_db, settings)
    organizations = OrganizationRepository(mongo_db, settings)
    directories = DirectoryRepository(mongo_db, settings)
    accounts = AccountRepository(mongo_db, settings)
    groups = GroupRepository(mongo_db, settings)
    api_keys = ApiKeyRepository(mongo_db, settings)

    codec = TokenCodec(settings.jwt_alg, settings.jwt_leeway_seconds)
    cache = RevocationCache(redis_client.client, codec, prefix=settings.token_cache_prefix)
    resolver = DirectoryResolver(
        accounts,
        directories,
        organizations,
        primary_directory_id=settings.primary_directory_id,
    )
    engine = GrantEngine(
        resolver=resolver,
        accounts=accounts,
        groups=groups,
        api_keys=api_keys,
        cache=cache,
        codec=codec,
        verifier=CredentialVerifier(settings.password_hash_rounds),
        environment=settings.ENVIRONMENT,
    )

    log.info(
        "startup.done service=%s env=%s primary_directory=%s",
        settings.SERVICE_NAME,
        settings.ENVIRONMENT,
        settings.primary_directory_id,
    )
    return Runtime(
        settings=settings,
        mongo_client=mongo_client,
        redis=redis_client,
        applications=applications,
        organizations=organizations,
        directories=directories,
        accounts=accounts,
        groups=groups,
        api_keys=api_keys,
        cache=cache,
        engine=engine,
    )
