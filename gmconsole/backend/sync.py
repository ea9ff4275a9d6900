"""Change-feed routing and UI timing helpers: debounced notes and stale-fetch guards."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from gmconsole.backend.models import ChangeEvent
from gmconsole.backend.store import Predicate, Repository, Unsubscribe

logger = logging.getLogger(__name__)

DEFAULT_NOTES_DEBOUNCE_MS = 500


class ChangeDispatcher:
    """Routes repository change events to refresh callbacks.

    A refresh re-runs its query from scratch; events carry no payload the
    callback relies on. Refresh failures are logged and otherwise ignored
    because the next change triggers a fresh read anyway.
    """

    def __init__(self, repository: Repository) -> None:
        self._repository = repository
        self._handles: dict[int, Unsubscribe] = {}
        self._next_route = 0

    def route(self, collection: str, refresh: Callable[[], Any], predicate: Predicate | None = None) -> Unsubscribe:
        route_id = self._next_route
        self._next_route += 1

        def on_change(event: ChangeEvent) -> None:
            self._dispatch(refresh, event)

        handle = self._repository.subscribe(collection, predicate, on_change)
        self._handles[route_id] = handle

        def unsubscribe() -> None:
            removed = self._handles.pop(route_id, None)
            if removed is not None:
                removed()

        return unsubscribe

    def _dispatch(self, refresh: Callable[[], Any], event: ChangeEvent) -> None:
        try:
            refresh()
        except Exception:
            logger.warning("Background refresh after %s %s %s failed", event.kind, event.collection, event.record_id, exc_info=True)

    @property
    def route_count(self) -> int:
        return len(self._handles)

    def close(self) -> None:
        for handle in list(self._handles.values()):
            handle()
        self._handles.clear()


class NotesDebouncer:
    """Coalesces rapid free-text edits into one write per key.

    Each submit cancels the pending write for its key and schedules a new one
    after the debounce window. flush_all() writes everything still pending and
    must be called on teardown so the last edit is not lost.
    """

    def __init__(
        self,
        write: Callable[[str, str], None],
        delay_ms: int = DEFAULT_NOTES_DEBOUNCE_MS,
        after_fire: Callable[[str], None] | None = None,
    ) -> None:
        self._write = write
        self._after_fire = after_fire
        self._delay = delay_ms / 1000
        self._pending: dict[str, tuple[asyncio.TimerHandle, str]] = {}

    def submit(self, key: str, value: str) -> None:
        loop = asyncio.get_running_loop()
        previous = self._pending.pop(key, None)
        if previous is not None:
            previous[0].cancel()
        handle = loop.call_later(self._delay, self._fire, key)
        self._pending[key] = (handle, value)

    def pending_keys(self) -> set[str]:
        return set(self._pending)

    def flush(self, key: str) -> bool:
        entry = self._pending.pop(key, None)
        if entry is None:
            return False
        entry[0].cancel()
        self._write(key, entry[1])
        return True

    def cancel(self, key: str) -> bool:
        """Drop a pending write without issuing it, e.g. when its record is gone."""
        entry = self._pending.pop(key, None)
        if entry is None:
            return False
        entry[0].cancel()
        return True

    def flush_all(self) -> int:
        """Write every pending value; a failed write is logged and the rest still go out."""
        flushed = 0
        for key in list(self._pending):
            try:
                if self.flush(key):
                    flushed += 1
            except Exception:
                logger.exception("Flushing notes for %s failed", key)
        return flushed

    def _fire(self, key: str) -> None:
        entry = self._pending.pop(key, None)
        if entry is None:
            return
        try:
            self._write(key, entry[1])
        except Exception:
            logger.exception("Debounced notes write for %s failed", key)
            return
        if self._after_fire is not None:
            self._after_fire(key)


class LatestRequestGuard:
    """Hands out request ids so callers can drop responses that arrive late."""

    def __init__(self) -> None:
        self._current = 0

    def begin(self) -> int:
        self._current += 1
        return self._current

    def is_current(self, request_id: int) -> bool:
        return request_id == self._current


class CurrentParticipantView:
    """Holds the resources (stats, abilities) of whoever's turn it is.

    Loads run off the event loop; a load that finishes after a newer
    selection is discarded.
    """

    def __init__(self, loader: Callable[[dict[str, Any]], dict[str, Any]]) -> None:
        self._loader = loader
        self._guard = LatestRequestGuard()
        self.participant_id: str | None = None
        self.resources: dict[str, Any] | None = None

    async def select(self, participant: dict[str, Any] | None) -> bool:
        request_id = self._guard.begin()
        self.participant_id = participant["id"] if participant else None
        if participant is None:
            self.resources = None
            return True

        resources = await asyncio.to_thread(self._loader, participant)
        if not self._guard.is_current(request_id):
            logger.debug("Discarding stale resources for participant %s", participant["id"])
            return False
        self.resources = resources
        return True
