from __future__ import annotations

import asyncio
from typing import Any, Callable, Protocol, TypeVar

from .errors import OperationCancelled
from .identifiers import Identifier
from .interfaces import DatabaseService, Filter
from .mongo_store import MongoDatabaseService
from .scope import Scope

T = TypeVar("T")


class AsyncDatabaseService(Protocol):
    async def connect(self) -> Scope: ...
    async def disconnect(self, scope: Scope) -> None: ...

    async def create(
        self, scope: Scope, database: str, table: str, identifier: str | Identifier | None, document: Any
    ) -> str: ...

    async def read(self, scope: Scope, database: str, table: str, filter: Filter, target: type[T] = ...) -> T: ...
    async def read_with_id(
        self, scope: Scope, database: str, table: str, filter: Filter, target: type[T] = ...
    ) -> tuple[str, T]: ...
    async def read_by_id(
        self, scope: Scope, database: str, table: str, identifier: str | Identifier, target: type[T] = ...
    ) -> T: ...

    async def update(self, scope: Scope, database: str, table: str, filter: Filter, document: Any) -> None: ...
    async def delete(self, scope: Scope, database: str, table: str, identifier: str | Identifier) -> None: ...


class AsyncMongoDatabaseService(AsyncDatabaseService):
    """
    Async wrapper around a blocking DatabaseService.
    Uses asyncio.to_thread to avoid blocking the event loop on backend round trips.

    Cancelling the scope wakes the awaiting task with OperationCancelled right
    away; the worker thread finishes (or fails) on its own.
    """

    def __init__(self, service: DatabaseService | None = None) -> None:
        self._service = service if service is not None else MongoDatabaseService()

    @property
    def service(self) -> DatabaseService:
        return self._service

    async def connect(self) -> Scope:
        return await asyncio.to_thread(self._service.connect)

    async def disconnect(self, scope: Scope) -> None:
        await asyncio.to_thread(self._service.disconnect, scope)

    async def create(
        self, scope: Scope, database: str, table: str, identifier: str | Identifier | None, document: Any
    ) -> str:
        return await self._run(scope, self._service.create, database, table, identifier, document)

    async def read(self, scope: Scope, database: str, table: str, filter: Filter, target: type[T] = dict) -> T:
        return await self._run(scope, self._service.read, database, table, filter, target)

    async def read_with_id(
        self, scope: Scope, database: str, table: str, filter: Filter, target: type[T] = dict
    ) -> tuple[str, T]:
        return await self._run(scope, self._service.read_with_id, database, table, filter, target)

    async def read_by_id(
        self, scope: Scope, database: str, table: str, identifier: str | Identifier, target: type[T] = dict
    ) -> T:
        return await self._run(scope, self._service.read_by_id, database, table, identifier, target)

    async def update(self, scope: Scope, database: str, table: str, filter: Filter, document: Any) -> None:
        await self._run(scope, self._service.update, database, table, filter, document)

    async def delete(self, scope: Scope, database: str, table: str, identifier: str | Identifier) -> None:
        await self._run(scope, self._service.delete, database, table, identifier)

    async def _run(self, scope: Scope, fn: Callable[..., Any], *args: Any) -> Any:
        scope.check()
        loop = asyncio.get_running_loop()
        fut = asyncio.ensure_future(asyncio.to_thread(fn, scope, *args))

        def _wake() -> None:
            loop.call_soon_threadsafe(fut.cancel)

        unregister = scope.on_cancel(_wake)
        try:
            return await fut
        except asyncio.CancelledError:
            if scope.cancelled:
                raise OperationCancelled() from None
            raise
        finally:
            unregister()
