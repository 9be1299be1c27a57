from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorDatabase

from security_service.configs.logging_config import get_logger
from security_service.configs.settings import Settings
from security_service.domain.entities.account import ApiKey
from security_service.errors import NotFoundError
from security_service.repositories.mongo import from_doc, to_doc
from security_service.utils.time_utils import utc_now

log = get_logger(__name__)


class ApiKeyRepository:
    def __init__(self, db: AsyncIOMotorDatabase, settings: Settings):
        self._db = db
        self._settings = settings
        self._col = db["api_keys"]

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("public", 1)], unique=True)
        await self._col.create_index([("account_id", 1), ("public", 1)])

    async def find_by_id(self, key_id: str) -> ApiKey | None:
        doc = await self._col.find_one({"_id": key_id})
        return ApiKey(**from_doc(doc)) if doc else None

    async def find_by_public(self, public: str) -> ApiKey | None:
        doc = await self._col.find_one({"public": public})
        return ApiKey(**from_doc(doc)) if doc else None

    async def list_by_account(self, account_id: str) -> list[ApiKey]:
        cursor = self._col.find({"account_id": account_id}).sort("public", 1)
        return [ApiKey(**from_doc(doc)) async for doc in cursor]

    async def create(self, account_id: str) -> ApiKey:
        api_key = ApiKey(account_id=account_id, created=utc_now())
        await self._col.insert_one(to_doc(api_key))
        log.info("repo.api_key.create id=%s account=%s", api_key.id, account_id)
        return api_key

    async def delete(self, key_id: str, account_id: str) -> None:
        res = await self._col.delete_one({"_id": key_id, "account_id": account_id})
        if not res.deleted_count:
            raise NotFoundError("apiKey not found for account")
        log.info("repo.api_key.delete id=%s account=%s", key_id, account_id)

    async def delete_by_public(self, public: str, account_id: str) -> None:
        res = await self._col.delete_one({"public": public, "account_id": account_id})
        if not res.deleted_count:
            raise NotFoundError("apiKey not found for account")
        log.info("repo.api_key.delete account=%s", account_id)
