from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from bson import ObjectId
from bson.errors import InvalidId

from .errors import BackendError, EncodingError

ID_FIELD = "_id"


@dataclass(frozen=True)
class NativeId:
    """A backend-native 12-byte ObjectId."""

    oid: ObjectId

    def __str__(self) -> str:
        return str(self.oid)


@dataclass(frozen=True)
class OpaqueId:
    """Any identifier that does not parse as an ObjectId; stored verbatim."""

    value: str

    def __str__(self) -> str:
        return self.value


Identifier = Union[NativeId, OpaqueId]


def parse_identifier(raw: str | ObjectId | NativeId | OpaqueId) -> Identifier:
    """
    Classify a caller-supplied identifier.

    A 24-char hex string (or an ObjectId) becomes a NativeId; anything else is
    kept as an OpaqueId. The backend only treats `_id` specially when it holds
    its native type, so both forms have to survive the round trip.
    """
    if isinstance(raw, (NativeId, OpaqueId)):
        return raw
    if isinstance(raw, ObjectId):
        return NativeId(raw)
    if not isinstance(raw, str):
        raise EncodingError(f"identifier must be a string, got {type(raw).__name__}")
    if ObjectId.is_valid(raw):
        try:
            return NativeId(ObjectId(raw))
        except InvalidId:
            pass
    return OpaqueId(raw)


def format_identifier(identifier: Identifier) -> str:
    return str(identifier)


def to_backend(identifier: Identifier) -> ObjectId | str:
    if isinstance(identifier, NativeId):
        return identifier.oid
    return identifier.value


def from_backend(value: Any) -> Identifier:
    """
    Read an `_id` value as stored by the backend.

    Only ObjectIds and strings are produced by this package; anything else is a
    malformed identifier.
    """
    if isinstance(value, ObjectId):
        return NativeId(value)
    if isinstance(value, str):
        return OpaqueId(value)
    raise BackendError(f"malformed identifier in stored document: {value!r}")
