# db_endpoints.py
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Header, HTTPException, Request, Response
from pydantic import BaseModel, Field

from persistence.errors import (
    BackendError,
    DecodingError,
    DuplicateIdentifier,
    EncodingError,
    NotFound,
    OperationCancelled,
    PersistenceError,
)
from persistence.identifiers import format_identifier, parse_identifier
from persistence.repositories import AsyncDatabaseService
from persistence.scope import Scope
from settings import get_settings

router = APIRouter(prefix="/db", tags=["db"])
logger = logging.getLogger(__name__)

SETTINGS = get_settings()
DEBUG_LOG_REQUESTS = SETTINGS.debug_log_requests

# Most specific first: OperationCancelled is a BackendError.
_STATUS_BY_ERROR: list[tuple[type[PersistenceError], int]] = [
    (NotFound, 404),
    (DuplicateIdentifier, 409),
    (EncodingError, 422),
    (DecodingError, 500),
    (OperationCancelled, 503),
    (BackendError, 502),
]


class CreateDocumentBody(BaseModel):
    id: str | None = None
    document: dict[str, Any]


class FindDocumentBody(BaseModel):
    filter: dict[str, Any] = Field(default_factory=dict)


class UpdateDocumentBody(BaseModel):
    filter: dict[str, Any]
    document: dict[str, Any]


def _http_error(exc: PersistenceError) -> HTTPException:
    for err_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, err_type):
            return HTTPException(status_code=status, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _store(request: Request) -> AsyncDatabaseService:
    return request.app.state.store


def _call_scope(request: Request, timeout: float | None) -> Scope:
    """
    Per-request scope derived from the connection's lifetime.
    `X-Timeout` (seconds) sets a deadline for this call only. Use it as a
    context manager so it detaches from the root when the request ends.
    """
    root: Scope = request.app.state.scope
    return root.child(timeout=timeout)


@router.post("/{database}/{table}", status_code=201)
async def create_document(
    database: str,
    table: str,
    body: CreateDocumentBody,
    request: Request,
    x_timeout: float | None = Header(default=None),
) -> dict[str, Any]:
    if DEBUG_LOG_REQUESTS:
        logger.info("CREATE %s.%s id=%s", database, table, body.id)
    try:
        with _call_scope(request, x_timeout) as scope:
            new_id = await _store(request).create(scope, database, table, body.id, body.document)
    except PersistenceError as e:
        raise _http_error(e) from e
    return {"id": new_id}


@router.post("/{database}/{table}/find")
async def find_document(
    database: str,
    table: str,
    body: FindDocumentBody,
    request: Request,
    x_timeout: float | None = Header(default=None),
) -> dict[str, Any]:
    if DEBUG_LOG_REQUESTS:
        logger.info("FIND %s.%s filter=%s", database, table, body.filter)
    try:
        with _call_scope(request, x_timeout) as scope:
            doc_id, doc = await _store(request).read_with_id(scope, database, table, body.filter)
    except PersistenceError as e:
        raise _http_error(e) from e
    return {"id": doc_id, "document": doc}


@router.get("/{database}/{table}/{doc_id}")
async def get_document(
    database: str,
    table: str,
    doc_id: str,
    request: Request,
    x_timeout: float | None = Header(default=None),
) -> dict[str, Any]:
    if DEBUG_LOG_REQUESTS:
        logger.info("GET %s.%s id=%s", database, table, doc_id)
    try:
        identifier = parse_identifier(doc_id)
        with _call_scope(request, x_timeout) as scope:
            doc = await _store(request).read_by_id(scope, database, table, identifier)
    except PersistenceError as e:
        raise _http_error(e) from e
    return {"id": format_identifier(identifier), "document": doc}


@router.put("/{database}/{table}", status_code=204)
async def replace_document(
    database: str,
    table: str,
    body: UpdateDocumentBody,
    request: Request,
    x_timeout: float | None = Header(default=None),
) -> Response:
    if DEBUG_LOG_REQUESTS:
        logger.info("UPDATE %s.%s filter=%s", database, table, body.filter)
    try:
        with _call_scope(request, x_timeout) as scope:
            await _store(request).update(scope, database, table, body.filter, body.document)
    except PersistenceError as e:
        raise _http_error(e) from e
    return Response(status_code=204)


@router.delete("/{database}/{table}/{doc_id}", status_code=204)
async def delete_document(
    database: str,
    table: str,
    doc_id: str,
    request: Request,
    x_timeout: float | None = Header(default=None),
) -> Response:
    if DEBUG_LOG_REQUESTS:
        logger.info("DELETE %s.%s id=%s", database, table, doc_id)
    try:
        with _call_scope(request, x_timeout) as scope:
            await _store(request).delete(scope, database, table, doc_id)
    except PersistenceError as e:
        raise _http_error(e) from e
    return Response(status_code=204)
