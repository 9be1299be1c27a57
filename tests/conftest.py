from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from copy import deepcopy
from types import SimpleNamespace
from uuid import uuid4

import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from pymongo.errors import DuplicateKeyError, OperationFailure

from security_service.auth.jwt import TokenCodec
from security_service.auth.password import CredentialVerifier
from security_service.configs.settings import Settings
from security_service.domain.entities.account import Account, ApiKey
from security_service.domain.entities.application import Application
from security_service.domain.entities.tenant import Directory, Group, Organization
from security_service.repositories.token_cache import RevocationCache
from security_service.services.directory_resolver import DirectoryResolver
from security_service.services.grant_engine import GrantEngine

PASSWORD = "correct horse battery staple"


class FakeAccounts:
    def __init__(self):
        self.items: dict[str, Account] = {}

    def add(self, account: Account) -> Account:
        self.items[account.id] = account
        return account

    async def find_by_id(self, account_id):
        return self.items.get(account_id)

    async def find_by_email_in_directory(self, email, directory_id):
        return next(
            (a for a in self.items.values() if a.email == email and a.directory_id == directory_id),
            None,
        )

    async def find_by_username_in_directory(self, username, directory_id):
        return next(
            (
                a
                for a in self.items.values()
                if a.username == username and a.directory_id == directory_id
            ),
            None,
        )


class FakeDirectories:
    def __init__(self):
        self.items: dict[str, Directory] = {}
        self.links: set[tuple[str, str]] = set()

    def add(self, directory: Directory, *application_ids: str) -> Directory:
        self.items[directory.id] = directory
        for app_id in application_ids:
            self.links.add((directory.id, app_id))
        return directory

    async def find_by_id(self, directory_id):
        return self.items.get(directory_id)

    async def belongs_to_application(self, directory_id, application_id):
        return (directory_id, application_id) in self.links


class FakeOrganizations:
    def __init__(self):
        self.items: dict[str, Organization] = {}

    def add(self, organization: Organization) -> Organization:
        self.items[organization.id] = organization
        return organization

    async def find_by_id(self, organization_id):
        return self.items.get(organization_id)


class FakeGroups:
    def __init__(self):
        self.items: dict[str, Group] = {}
        self.members: dict[str, list[str]] = {}

    def add(self, group: Group, *account_ids: str) -> Group:
        self.items[group.id] = group
        for account_id in account_ids:
            self.members.setdefault(account_id, []).append(group.id)
        return group

    async def enabled_groups_for_account(self, account_id):
        groups = [self.items[g] for g in self.members.get(account_id, [])]
        return sorted((g for g in groups if g.status == "ENABLED"), key=lambda g: g.name)


class FakeApiKeys:
    def __init__(self):
        self.items: dict[str, ApiKey] = {}

    def add(self, api_key: ApiKey) -> ApiKey:
        self.items[api_key.public] = api_key
        return api_key

    async def find_by_public(self, public):
        return self.items.get(public)


@pytest.fixture
def redis_client():
    return FakeAsyncRedis(server=FakeServer(), decode_responses=True)


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec("HS256")


@pytest.fixture
def verifier() -> CredentialVerifier:
    return CredentialVerifier(rounds=4)


@pytest.fixture
def cache(redis_client, codec) -> RevocationCache:
    return RevocationCache(redis_client, codec, prefix="test:")


@pytest.fixture
def world(verifier):
    """One organization with an application directory and a primary directory."""
    app = Application(name="portal", access_token_ttl=600, refresh_token_ttl=86400)
    other_app = Application(name="other")

    organizations = FakeOrganizations()
    org = organizations.add(Organization(name="Acme Widgets", type="customer"))

    directories = FakeDirectories()
    directory = directories.add(
        Directory(organization_id=org.id, name="customers", is_default=True), app.id
    )
    primary = directories.add(Directory(organization_id=org.id, name="house"))

    accounts = FakeAccounts()
    password_hash = verifier.hash(PASSWORD)
    alice = accounts.add(
        Account(
            directory_id=directory.id,
            email="alice@example.com",
            username="alice",
            given_name="Alice",
            surname="Liddell",
            password=password_hash,
        )
    )
    staff = accounts.add(
        Account(
            directory_id=primary.id,
            email="ops@example.com",
            given_name="Ops",
            surname="Staff",
            password=password_hash,
        )
    )
    disabled = accounts.add(
        Account(
            directory_id=directory.id,
            email="bob@example.com",
            given_name="Bob",
            surname="Gone",
            password=password_hash,
            status="DISABLED",
        )
    )

    groups = FakeGroups()
    groups.add(Group(directory_id=directory.id, name="users"), alice.id)
    groups.add(Group(directory_id=directory.id, name="admin"), alice.id)
    groups.add(Group(directory_id=directory.id, name="legacy", status="DISABLED"), alice.id)
    groups.add(Group(directory_id=primary.id, name="ops"), staff.id)

    api_keys = FakeApiKeys()
    alice_key = api_keys.add(ApiKey(account_id=alice.id))

    return SimpleNamespace(
        password=PASSWORD,
        app=app,
        other_app=other_app,
        org=org,
        directory=directory,
        primary=primary,
        alice=alice,
        staff=staff,
        disabled=disabled,
        alice_key=alice_key,
        organizations=organizations,
        directories=directories,
        accounts=accounts,
        groups=groups,
        api_keys=api_keys,
    )


@pytest.fixture
def resolver(world) -> DirectoryResolver:
    return DirectoryResolver(
        world.accounts,
        world.directories,
        world.organizations,
        primary_directory_id=world.primary.id,
    )


@pytest.fixture
def engine(world, resolver, cache, codec, verifier) -> GrantEngine:
    return GrantEngine(
        resolver=resolver,
        accounts=world.accounts,
        groups=world.groups,
        api_keys=world.api_keys,
        cache=cache,
        codec=codec,
        verifier=verifier,
        environment="test",
    )


# ----------------------------
# mongo
# ----------------------------


def _matches(doc: dict, query: dict) -> bool:
    for field, expected in query.items():
        value = doc.get(field)
        if isinstance(expected, dict) and "$in" in expected:
            if value not in expected["$in"]:
                return False
        elif value != expected:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: list[dict]):
        self._docs = docs

    def sort(self, key, direction: int = 1):
        keys = [(key, direction)] if isinstance(key, str) else list(key)
        for field, order in reversed(keys):
            self._docs.sort(key=lambda d: d.get(field), reverse=order < 0)
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self._docs:
            yield doc


class FakeSession:
    """Transaction bookkeeping: first writer of a document holds it until commit."""

    def __init__(self, client: FakeMongoClient):
        self.client = client
        self.in_transaction = False
        self._undo: list = []
        self._held: set = set()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        if self.in_transaction:
            self._abort()
        return False

    def claim(self, key, restore) -> None:
        holder = self.client.holders.get(key)
        if holder is not None and holder is not self:
            raise OperationFailure(
                "WriteConflict", code=112, details={"errorLabels": ["TransientTransactionError"]}
            )
        self.client.holders[key] = self
        self._held.add(key)
        self._undo.append(restore)

    def _release(self) -> None:
        for key in self._held:
            self.client.holders.pop(key, None)
        self._held = set()
        self._undo = []
        self.in_transaction = False

    def _abort(self) -> None:
        for restore in reversed(self._undo):
            restore()
        self._release()

    @asynccontextmanager
    async def start_transaction(self):
        self.in_transaction = True
        try:
            yield self
        except BaseException:
            self._abort()
            raise
        self._release()

    async def with_transaction(self, callback):
        while True:
            self.in_transaction = True
            try:
                result = await callback(self)
            except OperationFailure as e:
                self._abort()
                if e.has_error_label("TransientTransactionError"):
                    self.client.retries += 1
                    await asyncio.sleep(0)
                    continue
                raise
            except BaseException:
                self._abort()
                raise
            self._release()
            return result


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.docs: dict = {}

    async def create_index(self, *args, **kwargs) -> str:
        return "index"

    def _first(self, query: dict) -> dict | None:
        return next((d for d in self.docs.values() if _matches(d, query)), None)

    def _track(self, _id, session) -> None:
        if session is None or not session.in_transaction:
            return
        previous = self.docs.get(_id)

        def restore():
            if previous is None:
                self.docs.pop(_id, None)
            else:
                self.docs[_id] = previous

        session.claim((self.name, _id), restore)

    def _put(self, doc: dict, session) -> None:
        self._track(doc["_id"], session)
        self.docs[doc["_id"]] = doc

    def _remove(self, _id, session) -> None:
        self._track(_id, session)
        self.docs.pop(_id, None)

    async def find_one(self, query: dict, session=None) -> dict | None:
        await asyncio.sleep(0)
        doc = self._first(query)
        return deepcopy(doc) if doc else None

    def find(self, query: dict | None = None, session=None) -> FakeCursor:
        return FakeCursor([deepcopy(d) for d in self.docs.values() if _matches(d, query or {})])

    async def count_documents(self, query: dict, limit: int = 0, session=None) -> int:
        count = sum(1 for d in self.docs.values() if _matches(d, query))
        return min(count, limit) if limit else count

    async def insert_one(self, doc: dict, session=None):
        await asyncio.sleep(0)
        doc = deepcopy(doc)
        doc.setdefault("_id", uuid4().hex)
        if doc["_id"] in self.docs:
            raise DuplicateKeyError("duplicate key")
        self._put(doc, session)
        return SimpleNamespace(inserted_id=doc["_id"])

    async def replace_one(self, query: dict, doc: dict, upsert: bool = False, session=None):
        await asyncio.sleep(0)
        current = self._first(query)
        if current is None and not upsert:
            return SimpleNamespace(matched_count=0)
        doc = deepcopy(doc)
        doc["_id"] = current["_id"] if current else doc.get("_id", query.get("_id"))
        self._put(doc, session)
        return SimpleNamespace(matched_count=1 if current else 0)

    async def update_one(self, query: dict, update: dict, upsert: bool = False, session=None):
        await asyncio.sleep(0)
        current = self._first(query)
        if current is None:
            if not upsert:
                return SimpleNamespace(matched_count=0)
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            doc.setdefault("_id", uuid4().hex)
            doc.update(update.get("$setOnInsert", {}))
        else:
            doc = deepcopy(current)
        doc.update(update.get("$set", {}))
        for field, amount in update.get("$inc", {}).items():
            doc[field] = doc.get(field, 0) + amount
        self._put(doc, session)
        return SimpleNamespace(matched_count=1 if current else 0)

    async def delete_one(self, query: dict, session=None):
        await asyncio.sleep(0)
        current = self._first(query)
        if current is None:
            return SimpleNamespace(deleted_count=0)
        self._remove(current["_id"], session)
        return SimpleNamespace(deleted_count=1)

    async def delete_many(self, query: dict, session=None):
        await asyncio.sleep(0)
        matched = [d["_id"] for d in self.docs.values() if _matches(d, query)]
        for _id in matched:
            self._remove(_id, session)
        return SimpleNamespace(deleted_count=len(matched))


class FakeMongoDatabase:
    def __init__(self, client: FakeMongoClient):
        self.client = client
        self._collections: dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        return self._collections.setdefault(name, FakeCollection(name))


class FakeMongoClient:
    """Just enough of motor for the repositories, with per-document write conflicts."""

    def __init__(self):
        self.holders: dict = {}
        self.retries = 0

    async def start_session(self) -> FakeSession:
        return FakeSession(self)

    def __getitem__(self, name: str) -> FakeMongoDatabase:
        return FakeMongoDatabase(self)


@pytest.fixture
def mongo_db() -> FakeMongoDatabase:
    return FakeMongoClient()["security_service_test"]


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)
