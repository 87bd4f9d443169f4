"""
Shared fixtures for record provider tests.

The document store is replaced by an in-memory fake client that mirrors
the parts of the Motor API the provider uses and raises the real pymongo
error classes.
"""

import asyncio
import copy
from types import SimpleNamespace
from urllib.parse import urlsplit

import pytest
import pytest_asyncio
from pymongo.errors import ConfigurationError, DuplicateKeyError, InvalidOperation

from mongo_records import ConnectionRegistry, MongoRecordProvider


class FakeCursor:
    """Cursor returned by FakeCollection.find."""

    def __init__(self, documents):
        self._documents = documents

    async def to_list(self, length=None):
        await asyncio.sleep(0)
        return self._documents if length is None else self._documents[:length]


class FakeCollection:
    """In-memory collection keyed by _id, in insertion order."""

    def __init__(self, client, name):
        self._client = client
        self.name = name
        self.documents = {}
        self.update_error = None
        self.vanish_after_update = False

    def _matches(self, document, query):
        return all(document.get(key) == value for key, value in query.items())

    def find(self, query=None):
        self._client.check_open()
        query = query or {}
        return FakeCursor(
            [copy.deepcopy(doc) for doc in self.documents.values() if self._matches(doc, query)]
        )

    async def find_one(self, query):
        self._client.check_open()
        await asyncio.sleep(0)
        for doc in self.documents.values():
            if self._matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def insert_one(self, document):
        self._client.check_open()
        await asyncio.sleep(0)
        if document["_id"] in self.documents:
            raise DuplicateKeyError(
                f"E11000 duplicate key error collection: {self.name} index: _id_",
                code=11000,
            )
        self.documents[document["_id"]] = copy.deepcopy(document)
        return SimpleNamespace(inserted_id=document["_id"], acknowledged=True)

    async def update_one(self, query, update, upsert=False):
        self._client.check_open()
        await asyncio.sleep(0)
        if self.update_error is not None:
            raise self.update_error
        identifier = query["_id"]
        fields = update.get("$set", {})

        if identifier in self.documents:
            stored = self.documents[identifier]
            changed = any(stored.get(key) != value for key, value in fields.items())
            stored.update(copy.deepcopy(fields))
            if self.vanish_after_update:
                del self.documents[identifier]
            return SimpleNamespace(matched_count=1, modified_count=int(changed), upserted_id=None)

        if upsert:
            document = {"_id": identifier}
            document.update(copy.deepcopy(fields))
            self.documents[identifier] = document
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=identifier)

        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    async def delete_one(self, query):
        self._client.check_open()
        await asyncio.sleep(0)
        for identifier, doc in list(self.documents.items()):
            if self._matches(doc, query):
                del self.documents[identifier]
                return SimpleNamespace(deleted_count=1, acknowledged=True)
        return SimpleNamespace(deleted_count=0, acknowledged=True)


class FakeDatabase:
    """In-memory database creating collections on first access."""

    def __init__(self, client, name):
        self._client = client
        self.name = name
        self.collections = {}

    def __getitem__(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(self._client, name)
        return self.collections[name]


class FakeAdmin:
    """Admin database answering the ping command."""

    def __init__(self, client, error=None):
        self._client = client
        self._error = error
        self.pings = 0

    async def command(self, name):
        self.pings += 1
        await asyncio.sleep(0)
        if self._error is not None:
            raise self._error
        self._client.check_open()
        return {"ok": 1.0}


class FakeClient:
    """Stand-in for AsyncIOMotorClient."""

    def __init__(self, connection_string, ping_error=None, **kwargs):
        self.connection_string = connection_string
        self.kwargs = kwargs
        self.closed = False
        self.databases = {}
        self.admin = FakeAdmin(self, ping_error)

    def check_open(self):
        if self.closed:
            raise InvalidOperation("Cannot use MongoClient after close")

    def get_default_database(self, default=None):
        name = urlsplit(self.connection_string).path.lstrip("/") or default
        if not name:
            raise ConfigurationError("No default database name defined or provided.")
        return self[name]

    def __getitem__(self, name):
        if name not in self.databases:
            self.databases[name] = FakeDatabase(self, name)
        return self.databases[name]

    def close(self):
        self.closed = True


class FakeClientFactory:
    """Client factory recording every physical connect."""

    def __init__(self):
        self.clients = []
        self.failures = []

    def __call__(self, connection_string, **kwargs):
        error = self.failures.pop(0) if self.failures else None
        client = FakeClient(connection_string, ping_error=error, **kwargs)
        self.clients.append(client)
        return client


@pytest.fixture
def client_factory():
    """Factory producing fake document store clients."""
    return FakeClientFactory()


@pytest.fixture
def registry(client_factory):
    """Connection registry isolated to one test."""
    return ConnectionRegistry(client_factory=client_factory)


@pytest.fixture
def provider(registry):
    """Provider bound to the isolated registry."""
    return MongoRecordProvider("mongodb://localhost:27017/records", registry=registry)


@pytest_asyncio.fixture
async def users_collection(provider, registry):
    """Users collection holding one stored record, cleaned up afterwards."""
    await provider.create("users", {"_id": 23, "name": "Jane", "nickname": "jane"})
    db = await provider.get_db()
    yield db["users"]
    await registry.close_all()
