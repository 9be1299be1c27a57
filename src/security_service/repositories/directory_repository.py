from __future__ import annotations

from functools import partial

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase

from security_service.configs.logging_config import get_logger
from security_service.configs.settings import Settings
from security_service.domain.entities.tenant import Directory
from security_service.domain.validation import validate_entity
from security_service.errors import ConflictError, NotFoundError, ValidationError
from security_service.repositories.mongo import from_doc, run_in_transaction, to_doc
from security_service.services.default_directory import plan_delete, plan_save
from security_service.utils.time_utils import utc_now

log = get_logger(__name__)


class DirectoryRepository:
    def __init__(self, db: AsyncIOMotorDatabase, settings: Settings):
        self._db = db
        self._settings = settings
        self._col = db["directories"]
        self._links = db["application_directories"]
        self._locks = db["directory_locks"]

    async def ensure_indexes(self) -> None:
        log.info("repo.directory.ensure_indexes start")
        await self._col.create_index([("organization_id", 1), ("name", 1)], unique=True)
        await self._col.create_index([("organization_id", 1), ("is_default", 1)])
        await self._links.create_index([("application_id", 1), ("directory_id", 1)], unique=True)
        log.info("repo.directory.ensure_indexes done")

    async def find_by_id(
        self, directory_id: str, session: AsyncIOMotorClientSession | None = None
    ) -> Directory | None:
        doc = await self._col.find_one({"_id": directory_id}, session=session)
        return Directory(**from_doc(doc)) if doc else None

    async def find_by_name_and_organization(
        self, name: str, organization_id: str, session: AsyncIOMotorClientSession | None = None
    ) -> Directory | None:
        doc = await self._col.find_one(
            {"name": name, "organization_id": organization_id}, session=session
        )
        return Directory(**from_doc(doc)) if doc else None

    async def find_default(
        self, organization_id: str, session: AsyncIOMotorClientSession | None = None
    ) -> Directory | None:
        doc = await self._col.find_one(
            {"organization_id": organization_id, "is_default": True}, session=session
        )
        return Directory(**from_doc(doc)) if doc else None

    async def list_by_organization(
        self, organization_id: str, session: AsyncIOMotorClientSession | None = None
    ) -> list[Directory]:
        cursor = self._col.find({"organization_id": organization_id}, session=session).sort(
            [("created", 1), ("_id", 1)]
        )
        return [Directory(**from_doc(doc)) async for doc in cursor]

    async def list_by_application(self, application_id: str) -> list[Directory]:
        ids = [
            link["directory_id"]
            async for link in self._links.find({"application_id": application_id})
        ]
        if not ids:
            return []
        cursor = self._col.find({"_id": {"$in": ids}}).sort("name", 1)
        return [Directory(**from_doc(doc)) async for doc in cursor]

    async def belongs_to_application(self, directory_id: str, application_id: str) -> bool:
        count = await self._links.count_documents(
            {"directory_id": directory_id, "application_id": application_id}, limit=1
        )
        return count > 0

    async def add_to_application(self, directory_id: str, application_id: str) -> None:
        log.info("repo.directory.link app=%s directory=%s", application_id, directory_id)
        await self._links.update_one(
            {"directory_id": directory_id, "application_id": application_id},
            {"$setOnInsert": {"created": utc_now()}},
            upsert=True,
        )

    async def remove_from_application(self, directory_id: str, application_id: str) -> None:
        log.info("repo.directory.unlink app=%s directory=%s", application_id, directory_id)
        await self._links.delete_one({"directory_id": directory_id, "application_id": application_id})

    async def _lock_organization(
        self, organization_id: str, session: AsyncIOMotorClientSession
    ) -> None:
        # serializes default-directory transactions within one organization
        await self._locks.update_one(
            {"_id": organization_id},
            {"$inc": {"rev": 1}, "$set": {"updated": utc_now()}},
            upsert=True,
            session=session,
        )

    async def save(self, directory: Directory) -> Directory:
        """Insert or update `directory`, keeping one default per organization."""
        validate_entity("directory", directory)

        saved = await run_in_transaction(self._db, partial(self._save_in, directory))

        log.info(
            "repo.directory.save org=%s directory=%s is_default=%s",
            saved.organization_id,
            saved.id,
            saved.is_default,
        )
        return saved

    async def _save_in(self, directory: Directory, session: AsyncIOMotorClientSession) -> Directory:
        await self._lock_organization(directory.organization_id, session)

        by_name = await self.find_by_name_and_organization(
            directory.name, directory.organization_id, session=session
        )
        if by_name and by_name.id != directory.id:
            raise ConflictError("directory by that name already exists")

        stored = await self.find_by_id(directory.id, session=session)
        if stored and stored.organization_id != directory.organization_id:
            raise ValidationError("directory cannot change organization")

        existing = await self.list_by_organization(directory.organization_id, session=session)
        changes = plan_save(existing, directory)

        for sibling in changes[:-1]:
            log.info(
                "repo.directory.default_moved org=%s directory=%s is_default=%s",
                sibling.organization_id,
                sibling.id,
                sibling.is_default,
            )
            await self._col.update_one(
                {"_id": sibling.id},
                {"$set": {"is_default": sibling.is_default}},
                session=session,
            )

        saved = changes[-1]
        created = stored.created if stored else (saved.created or utc_now())
        saved = saved.model_copy(update={"created": created})
        await self._col.replace_one({"_id": saved.id}, to_doc(saved), upsert=True, session=session)
        return saved

    async def delete(self, directory_id: str, organization_id: str | None = None) -> None:
        """Delete a directory, promoting a sibling if it held the default."""
        stored = await run_in_transaction(
            self._db, partial(self._delete_in, directory_id, organization_id)
        )
        log.info("repo.directory.delete org=%s directory=%s", stored.organization_id, directory_id)

    async def _delete_in(
        self,
        directory_id: str,
        organization_id: str | None,
        session: AsyncIOMotorClientSession,
    ) -> Directory:
        stored = await self.find_by_id(directory_id, session=session)
        if stored is None or (organization_id and stored.organization_id != organization_id):
            raise NotFoundError("directory not found")

        await self._lock_organization(stored.organization_id, session)

        existing = await self.list_by_organization(stored.organization_id, session=session)
        await self._col.delete_one({"_id": directory_id}, session=session)
        await self._links.delete_many({"directory_id": directory_id}, session=session)

        for promoted in plan_delete(existing, directory_id):
            log.info(
                "repo.directory.default_moved org=%s directory=%s is_default=True",
                promoted.organization_id,
                promoted.id,
            )
            await self._col.update_one(
                {"_id": promoted.id}, {"$set": {"is_default": True}}, session=session
            )
        return stored
