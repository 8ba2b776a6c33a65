from __future__ import annotations

import contextlib
import logging
from enum import Enum
from typing import Any, Callable, Iterator, NoReturn, TypeVar

from bson.errors import BSONError, InvalidDocument, InvalidStringData
import pymongo
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from settings import Settings, get_settings

from . import codec
from .errors import (
    BackendError,
    DeadlineExceeded,
    DuplicateIdentifier,
    EncodingError,
    NotFound,
    OperationCancelled,
    StoreStateError,
    TableDoesNotExist,
)
from .identifiers import ID_FIELD, Identifier, format_identifier, from_backend, parse_identifier, to_backend
from .interfaces import DatabaseService, Filter
from .scope import Scope

logger = logging.getLogger(__name__)

T = TypeVar("T")

# pymongo treats a zero timeout as "no timeout".
_MIN_TIMEOUT = 0.001


class StoreState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    CLOSED = "closed"


def _fatal(message: str, exc: BaseException | None = None) -> NoReturn:
    if exc is None:
        logger.critical("DATABASE CONNECT: %s", message)
    else:
        logger.critical("DATABASE CONNECT: %s: %r", message, exc)
    raise SystemExit(1) from exc


class MongoDatabaseService(DatabaseService):
    """
    MongoDB implementation of the persistence contract.

    Owns one MongoClient for its whole life: DISCONNECTED -> CONNECTED -> CLOSED.
    The client is thread-safe and pooled, so no extra locking happens here.
    Backend errors are normalized into `persistence.errors`; nothing is retried.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client_factory: Callable[..., Any] = MongoClient,
    ):
        self._settings = settings
        self._client_factory = client_factory
        self._client: Any = None
        self._state = StoreState.DISCONNECTED

    @property
    def state(self) -> StoreState:
        return self._state

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> Scope:
        """
        Create the client and verify liveness with a bounded ping.

        Any failure here is fatal: it is logged and the process exits.
        """
        if self._state is not StoreState.DISCONNECTED:
            raise StoreStateError(f"connect() called while {self._state.value}")

        settings = self._settings or get_settings()
        if not settings.mongodb_uri:
            _fatal("MONGODB_URI is not set")

        # The connect timeout bounds the ping only; it is not a client-wide option.
        try:
            client = self._client_factory(settings.mongodb_uri)
        except (PyMongoError, ValueError, TypeError) as exc:
            _fatal("failed to create client", exc)

        try:
            with pymongo.timeout(settings.connect_timeout):
                client.admin.command("ping")
        except PyMongoError as exc:
            client.close()
            _fatal("liveness probe failed", exc)

        self._settings = settings
        self._client = client
        self._state = StoreState.CONNECTED
        logger.info("database initialized successfully")
        return Scope()

    def disconnect(self, scope: Scope) -> None:
        if self._state is not StoreState.CONNECTED:
            raise StoreStateError(f"disconnect() called while {self._state.value}")
        # Cancel first so in-flight calls report cancellation, not a closed client.
        scope.cancel()
        self._client.close()
        self._client = None
        self._state = StoreState.CLOSED
        logger.info("database connection closed")

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    def create(
        self, scope: Scope, database: str, table: str, identifier: str | Identifier | None, document: Any
    ) -> str:
        fields = codec.inject_identifier(codec.encode(document), identifier)
        col = self._collection(scope, database, table)
        logger.debug("create %s.%s id=%s", database, table, identifier)

        with self._round_trip(scope, "create"):
            try:
                res = col.insert_one(fields)
            except DuplicateKeyError as exc:
                raise DuplicateIdentifier(None if identifier is None else str(identifier)) from exc

        return format_identifier(from_backend(res.inserted_id))

    def read(self, scope: Scope, database: str, table: str, filter: Filter, target: type[T] = dict) -> T:
        _, doc = self.read_with_id(scope, database, table, filter, target)
        return doc

    def read_with_id(
        self, scope: Scope, database: str, table: str, filter: Filter, target: type[T] = dict
    ) -> tuple[str, T]:
        raw = self._find_one(scope, database, table, codec.encode_filter(filter))
        identifier, payload = codec.split_identifier(raw)
        if identifier is None:
            raise BackendError(f"stored document in {database}.{table} has no {ID_FIELD}")
        return format_identifier(identifier), codec.decode(payload, target)

    def read_by_id(
        self, scope: Scope, database: str, table: str, identifier: str | Identifier, target: type[T] = dict
    ) -> T:
        query = {ID_FIELD: to_backend(parse_identifier(identifier))}
        raw = self._find_one(scope, database, table, query)
        _, payload = codec.split_identifier(raw)
        return codec.decode(payload, target)

    def update(self, scope: Scope, database: str, table: str, filter: Filter, document: Any) -> None:
        # The matched document keeps its own _id; the replacement never carries one.
        replacement = codec.strip_identifier(codec.encode(document))
        query = codec.encode_filter(filter)
        col = self._collection(scope, database, table)
        logger.debug("update %s.%s filter=%s", database, table, query)

        with self._round_trip(scope, "update"):
            previous = col.find_one_and_replace(query, replacement)

        if previous is None:
            raise NotFound()

    def delete(self, scope: Scope, database: str, table: str, identifier: str | Identifier) -> None:
        query = {ID_FIELD: to_backend(parse_identifier(identifier))}
        col = self._collection(scope, database, table)
        logger.debug("delete %s.%s id=%s", database, table, identifier)

        with self._round_trip(scope, "delete"):
            res = col.delete_one(query)

        if res.deleted_count == 0:
            raise NotFound()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _find_one(self, scope: Scope, database: str, table: str, query: dict[str, Any]) -> dict[str, Any]:
        col = self._collection(scope, database, table)
        logger.debug("read %s.%s filter=%s", database, table, query)

        with self._round_trip(scope, "read"):
            raw = col.find_one(query)

        if raw is None:
            raise NotFound()
        return raw

    def _collection(self, scope: Scope, database: str, table: str) -> Collection:
        if self._state is not StoreState.CONNECTED:
            raise StoreStateError(f"operation on {database}.{table} while {self._state.value}")

        db = self._client.get_database(database)
        if self._settings is not None and self._settings.strict_tables:
            with self._round_trip(scope, "list collections"):
                names = db.list_collection_names()
            if table not in names:
                raise TableDoesNotExist(database, table)
        return db.get_collection(table)

    @contextlib.contextmanager
    def _round_trip(self, scope: Scope, op: str) -> Iterator[None]:
        """
        Run one backend call under the scope's deadline and normalize failures.
        """
        scope.check()
        remaining = scope.remaining()
        if remaining is not None:
            remaining = max(remaining, _MIN_TIMEOUT)

        try:
            with pymongo.timeout(remaining):
                yield
        except PyMongoError as exc:
            if scope.cancelled:
                raise OperationCancelled(f"{op} cancelled", exc) from exc
            if getattr(exc, "timeout", False) and scope.deadline is not None:
                raise DeadlineExceeded(f"{op} exceeded its deadline", exc) from exc
            logger.warning("%s failed: %r", op, exc)
            raise BackendError(f"{op} failed: {exc}", exc) from exc
        except (InvalidDocument, InvalidStringData, OverflowError, ValueError) as exc:
            # Rejected client-side while encoding the filter or document to BSON.
            raise EncodingError(f"{op}: cannot encode to BSON: {exc}") from exc
        except BSONError as exc:
            logger.warning("%s failed: %r", op, exc)
            raise BackendError(f"{op} failed: {exc}", exc) from exc
