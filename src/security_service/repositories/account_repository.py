from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase

from security_service.configs.logging_config import get_logger
from security_service.configs.settings import Settings
from security_service.domain.entities.account import Account
from security_service.domain.validation import validate_entity
from security_service.errors import ConflictError, NotFoundError
from security_service.repositories.mongo import from_doc, to_doc, transaction
from security_service.utils.time_utils import utc_now

log = get_logger(__name__)


class AccountRepository:
    def __init__(self, db: AsyncIOMotorDatabase, settings: Settings):
        self._db = db
        self._settings = settings
        self._col = db["accounts"]

    async def ensure_indexes(self) -> None:
        log.info("repo.account.ensure_indexes start")
        await self._col.create_index([("directory_id", 1), ("email", 1)], unique=True)
        await self._col.create_index(
            [("directory_id", 1), ("username", 1)],
            unique=True,
            partialFilterExpression={"username": {"$type": "string"}},
        )
        log.info("repo.account.ensure_indexes done")

    async def find_by_id(
        self, account_id: str, session: AsyncIOMotorClientSession | None = None
    ) -> Account | None:
        doc = await self._col.find_one({"_id": account_id}, session=session)
        return Account(**from_doc(doc)) if doc else None

    async def find_by_email_in_directory(
        self, email: str, directory_id: str, session: AsyncIOMotorClientSession | None = None
    ) -> Account | None:
        doc = await self._col.find_one(
            {"email": email, "directory_id": directory_id}, session=session
        )
        return Account(**from_doc(doc)) if doc else None

    async def find_by_username_in_directory(
        self, username: str, directory_id: str, session: AsyncIOMotorClientSession | None = None
    ) -> Account | None:
        doc = await self._col.find_one(
            {"username": username, "directory_id": directory_id}, session=session
        )
        return Account(**from_doc(doc)) if doc else None

    async def list_by_ids(self, account_ids: list[str]) -> list[Account]:
        cursor = self._col.find({"_id": {"$in": account_ids}}).sort("email", 1)
        return [Account(**from_doc(doc)) async for doc in cursor]

    async def save(self, account: Account) -> Account:
        """Insert or update; email and username are unique within a directory."""
        validate_entity("account", account)

        async with transaction(self._db) as session:
            by_email = await self.find_by_email_in_directory(
                account.email, account.directory_id, session=session
            )
            if by_email and by_email.id != account.id:
                raise ConflictError("account by that email already exists")

            if account.username:
                by_username = await self.find_by_username_in_directory(
                    account.username, account.directory_id, session=session
                )
                if by_username and by_username.id != account.id:
                    raise ConflictError("account by that username already exists")

            stored = await self.find_by_id(account.id, session=session)
            created = stored.created if stored else (account.created or utc_now())
            account = account.model_copy(update={"created": created})
            await self._col.replace_one(
                {"_id": account.id}, to_doc(account), upsert=True, session=session
            )

        log.info("repo.account.save id=%s directory=%s", account.id, account.directory_id)
        return account

    async def delete(self, account_id: str, directory_id: str | None = None) -> None:
        stored = await self.find_by_id(account_id)
        if stored is None or (directory_id and stored.directory_id != directory_id):
            raise NotFoundError("account not found")
        log.info("repo.account.delete id=%s directory=%s", account_id, stored.directory_id)
        await self._col.delete_one({"_id": account_id})
        await self._db["account_groups"].delete_many({"account_id": account_id})
        await self._db["api_keys"].delete_many({"account_id": account_id})
