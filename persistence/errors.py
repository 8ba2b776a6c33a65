from __future__ import annotations


class PersistenceError(Exception):
    """
    Base class for every recoverable persistence failure.

    Callers branch on the subclasses below; none of them expose backend types.
    """


class NotFound(PersistenceError):
    def __init__(self, message: str = "item does not exist"):
        super().__init__(message)


class TableDoesNotExist(NotFound):
    def __init__(self, database: str, table: str):
        super().__init__(f"table does not exist: {database}.{table}")
        self.database = database
        self.table = table


class DuplicateIdentifier(PersistenceError):
    def __init__(self, identifier: str | None = None):
        msg = "duplicated id" if not identifier else f"duplicated id: {identifier}"
        super().__init__(msg)
        self.identifier = identifier


class EncodingError(PersistenceError):
    pass


class NilDocument(EncodingError):
    def __init__(self) -> None:
        super().__init__("received document is nil")


class DecodingError(PersistenceError):
    pass


class BackendError(PersistenceError):
    """
    Any other backend-reported failure.

    The original exception is kept on `.cause` (and as `__cause__` when raised
    with `from`) for diagnostics.
    """

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class OperationCancelled(BackendError):
    def __init__(self, message: str = "operation cancelled", cause: BaseException | None = None):
        super().__init__(message, cause)


class DeadlineExceeded(OperationCancelled):
    def __init__(self, message: str = "deadline exceeded", cause: BaseException | None = None):
        super().__init__(message, cause)


class StoreStateError(RuntimeError):
    """Raised when the adapter is used outside the CONNECTED state."""
