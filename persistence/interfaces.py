from __future__ import annotations

from typing import Any, Mapping, Protocol, TypeVar

from .identifiers import Identifier
from .scope import Scope

T = TypeVar("T")

Filter = Mapping[str, Any]


class DatabaseService(Protocol):
    """
    Backend-agnostic document persistence contract.

    Failures are reported with the classes in `persistence.errors`; callers
    never see backend exception types.
    """

    def connect(self) -> Scope:
        """Open the backend connection and return its cancellable lifetime."""
        ...

    def disconnect(self, scope: Scope) -> None:
        ...

    def create(
        self, scope: Scope, database: str, table: str, identifier: str | Identifier | None, document: Any
    ) -> str:
        """Insert `document` and return the backend-confirmed identifier."""
        ...

    def read(self, scope: Scope, database: str, table: str, filter: Filter, target: type[T] = ...) -> T:
        ...

    def read_with_id(
        self, scope: Scope, database: str, table: str, filter: Filter, target: type[T] = ...
    ) -> tuple[str, T]:
        ...

    def read_by_id(
        self, scope: Scope, database: str, table: str, identifier: str | Identifier, target: type[T] = ...
    ) -> T:
        ...

    def update(self, scope: Scope, database: str, table: str, filter: Filter, document: Any) -> None:
        """Replace the first document matching `filter` wholesale."""
        ...

    def delete(self, scope: Scope, database: str, table: str, identifier: str | Identifier) -> None:
        ...
