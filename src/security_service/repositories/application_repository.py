from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase

from security_service.configs.logging_config import get_logger
from security_service.configs.settings import Settings
from security_service.domain.entities.application import Application
from security_service.domain.validation import validate_entity
from security_service.repositories.mongo import from_doc, to_doc, transaction
from security_service.utils.time_utils import utc_now

log = get_logger(__name__)


class ApplicationRepository:
    def __init__(self, db: AsyncIOMotorDatabase, settings: Settings):
        self._db = db
        self._settings = settings
        self._col = db["applications"]

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("name", 1)])

    async def find_by_id(
        self, application_id: str, session: AsyncIOMotorClientSession | None = None
    ) -> Application | None:
        doc = await self._col.find_one({"_id": application_id}, session=session)
        return Application(**from_doc(doc)) if doc else None

    async def find_by_name(self, name: str) -> Application | None:
        doc = await self._col.find_one({"name": name})
        return Application(**from_doc(doc)) if doc else None

    def new(self, name: str, **options) -> Application:
        """Build an application with the configured default token TTLs."""
        options.setdefault("access_token_ttl", self._settings.default_access_token_ttl)
        options.setdefault("refresh_token_ttl", self._settings.default_refresh_token_ttl)
        return Application(name=name, **options)

    async def save(self, application: Application) -> Application:
        validate_entity("application", application)

        async with transaction(self._db) as session:
            stored = await self.find_by_id(application.id, session=session)
            created = stored.created if stored else (application.created or utc_now())
            application = application.model_copy(update={"created": created})
            await self._col.replace_one(
                {"_id": application.id}, to_doc(application), upsert=True, session=session
            )

        log.info("repo.application.save id=%s status=%s", application.id, application.status)
        return application

    async def delete(self, application_id: str) -> None:
        log.info("repo.application.delete id=%s", application_id)
        await self._col.delete_one({"_id": application_id})
        await self._db["application_directories"].delete_many({"application_id": application_id})
