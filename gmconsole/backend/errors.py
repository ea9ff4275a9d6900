"""Exception taxonomy shared by the engine, services and API."""

from __future__ import annotations


class GMConsoleError(Exception):
    """Base class for all errors raised by the backend."""


class RepositoryError(GMConsoleError):
    """The record store failed; the operation was aborted."""


class RecordNotFoundError(RepositoryError):
    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(f"{collection} record {record_id!r} not found")
        self.collection = collection
        self.record_id = record_id


class DomainValidationError(GMConsoleError):
    """Input rejected before any repository write was issued."""


class InvalidTransitionError(DomainValidationError):
    def __init__(self, action: str, status: str) -> None:
        super().__init__(f"Cannot apply {action} to an encounter in status {status!r}")
        self.action = action
        self.status = status


class PartialWriteError(RepositoryError):
    """A batch of independent writes stopped partway through."""

    def __init__(self, message: str, applied: int, total: int) -> None:
        super().__init__(f"{message} ({applied}/{total} writes applied)")
        self.applied = applied
        self.total = total
