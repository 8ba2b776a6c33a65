from __future__ import annotations

from .codec import SupportsFields
from .errors import (
    BackendError,
    DeadlineExceeded,
    DecodingError,
    DuplicateIdentifier,
    EncodingError,
    NilDocument,
    NotFound,
    OperationCancelled,
    PersistenceError,
    StoreStateError,
    TableDoesNotExist,
)
from .identifiers import Identifier, NativeId, OpaqueId, format_identifier, parse_identifier
from .interfaces import DatabaseService
from .mongo_store import MongoDatabaseService, StoreState
from .repositories import AsyncDatabaseService, AsyncMongoDatabaseService
from .scope import Scope

__all__ = [
    "DatabaseService",
    "MongoDatabaseService",
    "StoreState",
    "AsyncDatabaseService",
    "AsyncMongoDatabaseService",
    "Scope",
    "SupportsFields",
    "Identifier",
    "NativeId",
    "OpaqueId",
    "parse_identifier",
    "format_identifier",
    "PersistenceError",
    "NotFound",
    "TableDoesNotExist",
    "DuplicateIdentifier",
    "EncodingError",
    "NilDocument",
    "DecodingError",
    "BackendError",
    "OperationCancelled",
    "DeadlineExceeded",
    "StoreStateError",
]
