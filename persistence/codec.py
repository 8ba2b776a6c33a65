from __future__ import annotations

from functools import lru_cache
from typing import Any, Mapping, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, TypeAdapter, ValidationError
from pydantic.errors import PydanticSchemaGenerationError
from pydantic_core import PydanticSerializationError

from .errors import DecodingError, EncodingError, NilDocument
from .identifiers import ID_FIELD, Identifier, NativeId, OpaqueId, from_backend, parse_identifier, to_backend

T = TypeVar("T")


@runtime_checkable
class SupportsFields(Protocol):
    """
    Capability for documents that know how to flatten themselves.
    """

    def to_fields(self) -> Mapping[str, Any]: ...


@lru_cache(maxsize=256)
def _adapter(tp: Any) -> TypeAdapter[Any]:
    return TypeAdapter(tp)


def encode(document: Any) -> dict[str, Any]:
    """
    Serialize a document into a JSON-compatible, string-keyed field map.

    Accepts mappings, pydantic models, dataclasses and anything else pydantic
    can serialize, plus objects implementing `to_fields()`. Values go through
    pydantic's JSON mode, so datetimes and similar types land as strings.
    """
    if document is None:
        raise NilDocument()

    if isinstance(document, SupportsFields):
        document = document.to_fields()

    try:
        if isinstance(document, BaseModel):
            fields = document.model_dump(mode="json")
        elif isinstance(document, Mapping):
            fields = _adapter(dict[str, Any]).dump_python(dict(document), mode="json")
        else:
            fields = _adapter(type(document)).dump_python(document, mode="json")
    except (PydanticSchemaGenerationError, PydanticSerializationError, TypeError, ValueError) as exc:
        raise EncodingError(f"cannot encode {type(document).__name__}: {exc}") from exc

    if not isinstance(fields, dict) or not all(isinstance(k, str) for k in fields):
        raise EncodingError(f"{type(document).__name__} does not encode to a string-keyed mapping")
    return fields


def inject_identifier(fields: Mapping[str, Any], raw: str | Identifier | None) -> dict[str, Any]:
    out = dict(fields)
    out.pop(ID_FIELD, None)
    if raw is None or raw == "":
        # Backend generates one.
        return out
    out[ID_FIELD] = to_backend(parse_identifier(raw))
    return out


def strip_identifier(fields: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(fields)
    out.pop(ID_FIELD, None)
    return out


def split_identifier(fields: Mapping[str, Any]) -> tuple[Identifier | None, dict[str, Any]]:
    payload = dict(fields)
    if ID_FIELD not in payload:
        return None, payload
    return from_backend(payload.pop(ID_FIELD)), payload


def encode_filter(filter: Mapping[str, Any] | None) -> dict[str, Any]:
    out = dict(filter or {})
    value = out.get(ID_FIELD)
    if isinstance(value, (str, NativeId, OpaqueId)):
        out[ID_FIELD] = to_backend(parse_identifier(value))
    return out


def decode(fields: Mapping[str, Any], target: type[T] | Any = dict) -> T:
    if target is dict or target is Any:
        return dict(fields)  # type: ignore[return-value]
    try:
        return _adapter(target).validate_python(dict(fields))
    except ValidationError as exc:
        raise DecodingError(f"cannot decode into {getattr(target, '__name__', target)}: {exc}") from exc
    except PydanticSchemaGenerationError as exc:
        raise DecodingError(f"unsupported decode target {target!r}") from exc
