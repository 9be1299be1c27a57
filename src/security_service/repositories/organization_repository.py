from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase

from security_service.configs.logging_config import get_logger
from security_service.configs.settings import Settings
from security_service.domain.entities.tenant import Organization
from security_service.domain.validation import validate_entity
from security_service.errors import ConflictError
from security_service.repositories.mongo import from_doc, to_doc, transaction
from security_service.utils.time_utils import utc_now

log = get_logger(__name__)


class OrganizationRepository:
    def __init__(self, db: AsyncIOMotorDatabase, settings: Settings):
        self._db = db
        self._settings = settings
        self._col = db["organizations"]

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("name_key", 1)], unique=True)
        await self._col.create_index([("type", 1), ("name", 1)])

    @staticmethod
    def _entity(doc: dict | None) -> Organization | None:
        if not doc:
            return None
        doc = from_doc(doc)
        doc.pop("name_key", None)
        return Organization(**doc)

    async def find_by_id(
        self, organization_id: str, session: AsyncIOMotorClientSession | None = None
    ) -> Organization | None:
        return self._entity(await self._col.find_one({"_id": organization_id}, session=session))

    async def find_by_name_key(
        self, name_key: str, session: AsyncIOMotorClientSession | None = None
    ) -> Organization | None:
        return self._entity(await self._col.find_one({"name_key": name_key}, session=session))

    async def list(self, org_type: str | None = None) -> list[Organization]:
        query = {"type": org_type} if org_type else {}
        cursor = self._col.find(query).sort("name", 1)
        return [self._entity(doc) async for doc in cursor]

    async def save(self, organization: Organization) -> Organization:
        validate_entity("organization", organization)

        async with transaction(self._db) as session:
            by_key = await self.find_by_name_key(organization.name_key, session=session)
            if by_key and by_key.id != organization.id:
                raise ConflictError("organization by that name already exists")

            stored = await self.find_by_id(organization.id, session=session)
            created = stored.created if stored else (organization.created or utc_now())
            organization = organization.model_copy(update={"created": created})
            doc = to_doc(organization)
            doc["name_key"] = organization.name_key
            await self._col.replace_one({"_id": organization.id}, doc, upsert=True, session=session)

        log.info("repo.organization.save id=%s name_key=%s", organization.id, organization.name_key)
        return organization

    async def delete(self, organization_id: str) -> None:
        log.info("repo.organization.delete id=%s", organization_id)
        await self._col.delete_one({"_id": organization_id})
