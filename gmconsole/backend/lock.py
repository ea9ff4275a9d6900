"""Combat lock collaborators that freeze player-side actions during encounters."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Protocol

from gmconsole.backend.models import APP_SETTINGS
from gmconsole.backend.store import Repository

logger = logging.getLogger(__name__)

PLAYERS_LOCKED_KEY = "players_locked"


class CombatLock(Protocol):
    def set_locked(self, locked: bool, reason: str | None) -> None:
        """Engage or release the players-locked flag."""


@dataclass
class InMemoryCombatLock:
    locked: bool = False
    reason: str | None = None
    history: list[tuple[bool, str | None]] = field(default_factory=list)

    def set_locked(self, locked: bool, reason: str | None) -> None:
        self.locked = locked
        self.reason = reason
        self.history.append((locked, reason))


@dataclass
class RepositoryCombatLock:
    """Keeps the flag as an app_settings row that player views subscribe to."""

    repository: Repository

    def set_locked(self, locked: bool, reason: str | None) -> None:
        value = {"locked": locked, "reason": reason}
        if self.repository.get(APP_SETTINGS, PLAYERS_LOCKED_KEY) is None:
            self.repository.insert(APP_SETTINGS, {"id": PLAYERS_LOCKED_KEY, "key": PLAYERS_LOCKED_KEY, "value": value})
        else:
            self.repository.update(APP_SETTINGS, PLAYERS_LOCKED_KEY, {"value": value})
        logger.info("Players %s (%s)", "locked" if locked else "unlocked", reason or "no reason")
