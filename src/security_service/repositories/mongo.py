from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorClientSession,
    AsyncIOMotorDatabase,
)

from security_service.configs.settings import Settings
from security_service.configs.logging_config import get_logger

log = get_logger(__name__)

T = TypeVar("T")


def get_mongo_client(settings: Settings) -> AsyncIOMotorClient:
    log.info("mongo.client.create uri=%s", settings.mongo_uri)
    return AsyncIOMotorClient(settings.mongo_uri, tz_aware=True)


def get_mongo_db(client: AsyncIOMotorClient, settings: Settings) -> AsyncIOMotorDatabase:
    log.info("mongo.db.select db=%s", settings.mongo_db)
    return client[settings.mongo_db]


@asynccontextmanager
async def transaction(db: AsyncIOMotorDatabase) -> AsyncIterator[AsyncIOMotorClientSession]:
    """Run the enclosed reads and writes as one atomic unit.

    Requires a replica set (or sharded cluster); the transaction is aborted
    when the block raises.
    """
    async with await db.client.start_session() as session:
        async with session.start_transaction():
            yield session


async def run_in_transaction(
    db: AsyncIOMotorDatabase,
    callback: Callable[[AsyncIOMotorClientSession], Awaitable[T]],
) -> T:
    """Run `callback(session)` in a transaction, retrying transient conflicts.

    The callback may be invoked more than once, so it must do all of its
    reads inside the session.
    """
    async with await db.client.start_session() as session:
        return await session.with_transaction(callback)


def to_doc(entity, *, exclude: set[str] | None = None) -> dict:
    doc = entity.model_dump(exclude=exclude)
    doc["_id"] = doc.pop("id")
    return doc


def from_doc(doc: dict | None) -> dict | None:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc
