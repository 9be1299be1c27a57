from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase

from security_service.configs.logging_config import get_logger
from security_service.configs.settings import Settings
from security_service.domain.entities.application import ENABLED
from security_service.domain.entities.tenant import Group
from security_service.domain.validation import validate_entity
from security_service.errors import ConflictError, NotFoundError
from security_service.repositories.mongo import from_doc, to_doc, transaction
from security_service.utils.time_utils import utc_now

log = get_logger(__name__)


class GroupRepository:
    def __init__(self, db: AsyncIOMotorDatabase, settings: Settings):
        self._db = db
        self._settings = settings
        self._col = db["groups"]
        self._members = db["account_groups"]

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("directory_id", 1), ("name", 1)], unique=True)
        await self._members.create_index([("account_id", 1), ("group_id", 1)], unique=True)
        await self._members.create_index([("group_id", 1)])

    async def find_by_id(
        self, group_id: str, session: AsyncIOMotorClientSession | None = None
    ) -> Group | None:
        doc = await self._col.find_one({"_id": group_id}, session=session)
        return Group(**from_doc(doc)) if doc else None

    async def find_by_name_and_directory(
        self, name: str, directory_id: str, session: AsyncIOMotorClientSession | None = None
    ) -> Group | None:
        doc = await self._col.find_one({"name": name, "directory_id": directory_id}, session=session)
        return Group(**from_doc(doc)) if doc else None

    async def enabled_groups_for_account(self, account_id: str) -> list[Group]:
        """Enabled groups the account belongs to, ordered by name."""
        group_ids = [m["group_id"] async for m in self._members.find({"account_id": account_id})]
        if not group_ids:
            return []
        cursor = self._col.find({"_id": {"$in": group_ids}, "status": ENABLED}).sort("name", 1)
        return [Group(**from_doc(doc)) async for doc in cursor]

    async def member_ids(self, group_id: str) -> list[str]:
        return [m["account_id"] async for m in self._members.find({"group_id": group_id})]

    async def add_account(self, group_id: str, account_id: str) -> None:
        log.info("repo.group.add_account group=%s account=%s", group_id, account_id)
        await self._members.update_one(
            {"group_id": group_id, "account_id": account_id},
            {"$setOnInsert": {"created": utc_now()}},
            upsert=True,
        )

    async def remove_account(self, group_id: str, account_id: str) -> None:
        log.info("repo.group.remove_account group=%s account=%s", group_id, account_id)
        await self._members.delete_one({"group_id": group_id, "account_id": account_id})

    async def save(self, group: Group) -> Group:
        validate_entity("group", group)

        async with transaction(self._db) as session:
            by_name = await self.find_by_name_and_directory(
                group.name, group.directory_id, session=session
            )
            if by_name and by_name.id != group.id:
                raise ConflictError("group by that name already exists")

            stored = await self.find_by_id(group.id, session=session)
            created = stored.created if stored else (group.created or utc_now())
            group = group.model_copy(update={"created": created})
            await self._col.replace_one({"_id": group.id}, to_doc(group), upsert=True, session=session)

        log.info("repo.group.save id=%s directory=%s", group.id, group.directory_id)
        return group

    async def delete(self, group_id: str, directory_id: str | None = None) -> None:
        stored = await self.find_by_id(group_id)
        if stored is None or (directory_id and stored.directory_id != directory_id):
            raise NotFoundError("group not found")
        log.info("repo.group.delete id=%s directory=%s", group_id, stored.directory_id)
        await self._col.delete_one({"_id": group_id})
        await self._members.delete_many({"group_id": group_id})
