from __future__ import annotations

import copy
from decimal import Decimal
from pathlib import Path
import sys
from types import SimpleNamespace
from typing import Any, Callable

import pytest
from bson import ObjectId
from bson.errors import InvalidDocument
from pymongo.errors import DuplicateKeyError, PyMongoError, WriteError


# Ensure the repository root (parent of ./tests) is importable during pytest collection.
# This avoids ModuleNotFoundError for imports like `import persistence...` under pytest import modes
# that don't automatically prepend the cwd/rootdir to sys.path.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

_MISSING = object()
_INT64_MAX = 2**63 - 1


def _check_bson(value: Any) -> None:
    """
    Reject what the real BSON encoder rejects client-side.
    """
    if isinstance(value, dict):
        for v in value.values():
            _check_bson(v)
    elif isinstance(value, list):
        for v in value:
            _check_bson(v)
    elif isinstance(value, bool):
        return
    elif isinstance(value, int) and not -_INT64_MAX - 1 <= value <= _INT64_MAX:
        raise OverflowError("BSON can only handle up to 8-byte ints")
    elif isinstance(value, (Decimal, set)):
        raise InvalidDocument(f"cannot encode object: {value!r}, of type: {type(value)!r}")


class FakeCollection:
    """
    In-memory stand-in for a pymongo Collection: equality filters only.
    """

    def __init__(self, client: FakeMongoClient, database: FakeDatabase, name: str):
        self._client = client
        self._database = database
        self.name = name
        self.docs: list[dict[str, Any]] = []

    def _before(self, op: str) -> None:
        self._client.calls.append((op, self._database.name, self.name))
        if self._client.hook is not None:
            self._client.hook(op)
        if self._client.fail_with is not None:
            raise self._client.fail_with

    def _index_of(self, query: dict[str, Any]) -> int | None:
        for i, doc in enumerate(self.docs):
            if all(doc.get(k, _MISSING) == v for k, v in query.items()):
                return i
        return None

    def insert_one(self, doc: dict[str, Any]):
        self._before("insert_one")
        _check_bson(doc)
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", ObjectId())
        if any(d["_id"] == doc["_id"] for d in self.docs):
            raise DuplicateKeyError("E11000 duplicate key error collection", code=11000)
        self.docs.append(doc)
        self._database.created.add(self.name)
        return SimpleNamespace(inserted_id=doc["_id"], acknowledged=True)

    def find_one(self, query: dict[str, Any]):
        self._before("find_one")
        _check_bson(query)
        idx = self._index_of(query)
        return None if idx is None else copy.deepcopy(self.docs[idx])

    def find_one_and_replace(self, query: dict[str, Any], replacement: dict[str, Any]):
        self._before("find_one_and_replace")
        if any(k.startswith("$") for k in replacement):
            raise ValueError("replacement can not include $ operators")
        _check_bson(query)
        _check_bson(replacement)
        idx = self._index_of(query)
        if idx is None:
            return None
        previous = self.docs[idx]
        if "_id" in replacement and replacement["_id"] != previous["_id"]:
            raise WriteError("Performing an update on the path '_id' would modify the immutable field '_id'", code=66)
        new_doc = copy.deepcopy(replacement)
        new_doc["_id"] = previous["_id"]
        self.docs[idx] = new_doc
        return copy.deepcopy(previous)

    def delete_one(self, query: dict[str, Any]):
        self._before("delete_one")
        idx = self._index_of(query)
        if idx is None:
            return SimpleNamespace(deleted_count=0, acknowledged=True)
        del self.docs[idx]
        return SimpleNamespace(deleted_count=1, acknowledged=True)


class FakeDatabase:
    def __init__(self, client: FakeMongoClient, name: str):
        self._client = client
        self.name = name
        self.collections: dict[str, FakeCollection] = {}
        self.created: set[str] = set()

    def get_collection(self, name: str) -> FakeCollection:
        col = self.collections.get(name)
        if col is None:
            col = FakeCollection(self._client, self, name)
            self.collections[name] = col
        return col

    def create_collection(self, name: str) -> FakeCollection:
        self.created.add(name)
        return self.get_collection(name)

    def list_collection_names(self) -> list[str]:
        self._client.calls.append(("list_collection_names", self.name, None))
        if self._client.fail_with is not None:
            raise self._client.fail_with
        return sorted(self.created)


class FakeMongoClient:
    def __init__(self, uri: str, *, ping_error: PyMongoError | None = None, **kwargs: Any):
        self.uri = uri
        self.kwargs = kwargs
        self.closed = False
        self.ping_error = ping_error
        self.calls: list[tuple[str, str, str | None]] = []
        self.hook: Callable[[str], None] | None = None
        self.fail_with: BaseException | None = None
        self.databases: dict[str, FakeDatabase] = {}
        self.admin = SimpleNamespace(command=self._admin_command)

    def _admin_command(self, name: str):
        if self.ping_error is not None:
            raise self.ping_error
        return {"ok": 1.0}

    def get_database(self, name: str) -> FakeDatabase:
        db = self.databases.get(name)
        if db is None:
            db = FakeDatabase(self, name)
            self.databases[name] = db
        return db

    def close(self) -> None:
        self.closed = True


class FakeMongoFactory:
    """
    Callable passed as `client_factory`; remembers every client it built.
    """

    def __init__(self) -> None:
        self.clients: list[FakeMongoClient] = []
        self.ping_error: PyMongoError | None = None

    def __call__(self, uri: str, **kwargs: Any) -> FakeMongoClient:
        client = FakeMongoClient(uri, ping_error=self.ping_error, **kwargs)
        self.clients.append(client)
        return client

    @property
    def client(self) -> FakeMongoClient:
        return self.clients[-1]

    def table(self, database: str, table: str) -> list[dict[str, Any]]:
        return self.client.get_database(database).get_collection(table).docs


@pytest.fixture
def settings():
    from settings import Settings

    return Settings(
        mongodb_uri="mongodb://fake-host:27017",
        connect_timeout=2.0,
        strict_tables=False,
        debug_log_requests=False,
    )


@pytest.fixture
def fake_mongo() -> FakeMongoFactory:
    return FakeMongoFactory()


@pytest.fixture
def store(settings, fake_mongo):
    """
    A connected MongoDatabaseService backed by the fake client, plus its scope.
    """
    from persistence.mongo_store import MongoDatabaseService, StoreState

    svc = MongoDatabaseService(settings, client_factory=fake_mongo)
    scope = svc.connect()
    yield svc, scope
    if svc.state is StoreState.CONNECTED:
        svc.disconnect(scope)
