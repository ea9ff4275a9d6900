"""Repository interfaces and implementations for campaign records."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
import json
import logging
from typing import Any, Callable, Protocol
import uuid

from gmconsole.backend.errors import RecordNotFoundError, RepositoryError
from gmconsole.backend.models import ChangeEvent

logger = logging.getLogger(__name__)

Predicate = Callable[[dict[str, Any]], bool]
ChangeHandler = Callable[[ChangeEvent], None]
Unsubscribe = Callable[[], None]


class Repository(Protocol):
    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        """Return one record or None when it does not exist."""

    def list(self, collection: str, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Return records whose fields equal every value in filters, oldest first."""

    def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        """Persist a new record, assigning an id when missing."""

    def update(self, collection: str, record_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Merge patch into an existing record and return the result."""

    def delete(self, collection: str, record_id: str) -> None:
        """Remove a record; deleting a missing record is a no-op."""

    def subscribe(self, collection: str, predicate: Predicate | None, on_change: ChangeHandler) -> Unsubscribe:
        """Register a change callback and return its unsubscribe handle."""


def _matches(record: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(record.get(key) == value for key, value in filters.items())


class SubscriberRegistry:
    """Fan-out of change events to per-collection subscribers."""

    def __init__(self) -> None:
        self._subscribers: dict[str, dict[int, tuple[Predicate | None, ChangeHandler]]] = defaultdict(dict)
        self._next_token = 0

    def add(self, collection: str, predicate: Predicate | None, on_change: ChangeHandler) -> Unsubscribe:
        token = self._next_token
        self._next_token += 1
        self._subscribers[collection][token] = (predicate, on_change)

        def unsubscribe() -> None:
            self._subscribers[collection].pop(token, None)

        return unsubscribe

    def notify(self, collection: str, kind: str, record_id: str, record: dict[str, Any] | None) -> None:
        event = ChangeEvent(collection=collection, kind=kind, record_id=record_id, record=record)
        for predicate, on_change in list(self._subscribers.get(collection, {}).values()):
            if predicate is not None and (record is None or not predicate(record)):
                continue
            try:
                on_change(event)
            except Exception:
                logger.exception("Change handler failed for %s %s", collection, record_id)


@dataclass
class InMemoryRepository:
    def __post_init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._subscribers = SubscriberRegistry()

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        record = self._collections[collection].get(record_id)
        return dict(record) if record is not None else None

    def list(self, collection: str, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        return [dict(record) for record in self._collections[collection].values() if _matches(record, filters)]

    def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        stored = dict(record)
        stored.setdefault("id", str(uuid.uuid4()))
        self._collections[collection][stored["id"]] = stored
        self._subscribers.notify(collection, "insert", stored["id"], dict(stored))
        return dict(stored)

    def update(self, collection: str, record_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        current = self._collections[collection].get(record_id)
        if current is None:
            raise RecordNotFoundError(collection, record_id)
        current.update(patch)
        self._subscribers.notify(collection, "update", record_id, dict(current))
        return dict(current)

    def delete(self, collection: str, record_id: str) -> None:
        removed = self._collections[collection].pop(record_id, None)
        if removed is not None:
            self._subscribers.notify(collection, "delete", record_id, dict(removed))

    def subscribe(self, collection: str, predicate: Predicate | None, on_change: ChangeHandler) -> Unsubscribe:
        return self._subscribers.add(collection, predicate, on_change)


@dataclass
class PostgresRepository:
    """Stores every collection in one JSONB table, see db_schema.sql."""

    database_url: str

    def __post_init__(self) -> None:
        self._subscribers = SubscriberRegistry()

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(self.database_url)

    def _run(self, sql: str, params: tuple, fetch: str | None = None) -> Any:
        import psycopg

        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    if fetch == "one":
                        result = cur.fetchone()
                    elif fetch == "all":
                        result = cur.fetchall()
                    else:
                        result = None
                conn.commit()
        except psycopg.Error as exc:
            raise RepositoryError(f"Database call failed: {exc}") from exc
        return result

    @staticmethod
    def _load(data: Any) -> dict[str, Any]:
        return data if isinstance(data, dict) else json.loads(data)

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        row = self._run(
            "SELECT data FROM records WHERE collection = %s AND id = %s",
            (collection, record_id),
            fetch="one",
        )
        if row is None:
            return None
        return self._load(row[0])

    def list(self, collection: str, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        rows = self._run(
            """
            SELECT data FROM records
            WHERE collection = %s AND data @> %s::jsonb
            ORDER BY seq
            """,
            (collection, json.dumps(filters or {})),
            fetch="all",
        )
        return [self._load(row[0]) for row in rows or []]

    def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        stored = dict(record)
        stored.setdefault("id", str(uuid.uuid4()))
        self._run(
            "INSERT INTO records (collection, id, data) VALUES (%s, %s, %s::jsonb)",
            (collection, stored["id"], json.dumps(stored)),
        )
        self._subscribers.notify(collection, "insert", stored["id"], dict(stored))
        return stored

    def update(self, collection: str, record_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        row = self._run(
            """
            UPDATE records SET data = data || %s::jsonb
            WHERE collection = %s AND id = %s
            RETURNING data
            """,
            (json.dumps(patch), collection, record_id),
            fetch="one",
        )
        if row is None:
            raise RecordNotFoundError(collection, record_id)
        updated = self._load(row[0])
        self._subscribers.notify(collection, "update", record_id, dict(updated))
        return updated

    def delete(self, collection: str, record_id: str) -> None:
        row = self._run(
            "DELETE FROM records WHERE collection = %s AND id = %s RETURNING data",
            (collection, record_id),
            fetch="one",
        )
        if row is not None:
            self._subscribers.notify(collection, "delete", record_id, self._load(row[0]))

    def subscribe(self, collection: str, predicate: Predicate | None, on_change: ChangeHandler) -> Unsubscribe:
        # Only writes issued through this instance are observed.
        return self._subscribers.add(collection, predicate, on_change)


def create_repository(database_url: str | None) -> Repository:
    if database_url:
        return PostgresRepository(database_url=database_url)
    return InMemoryRepository()
