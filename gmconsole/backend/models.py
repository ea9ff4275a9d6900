"""Domain models for encounter aggregates and persistence contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

ENCOUNTERS = "encounters"
PARTICIPANTS = "encounter_participants"
CHARACTERS = "characters"
NPCS = "npcs"
ABILITIES = "abilities"
ABILITY_GRANTS = "character_abilities"
INVENTORY = "inventory"
ITEMS = "items"
ITEM_ABILITIES = "item_abilities"
APP_SETTINGS = "app_settings"

ENCOUNTER_STATUSES = ("draft", "active", "completed", "archived")
PARTICIPANT_TYPES = ("player", "npc")
CHARGE_TYPES = ("infinite", "short_rest", "long_rest", "uses")
SOURCE_TYPES = ("class", "item", "temporary")

ENTITY_COLLECTIONS = {"player": CHARACTERS, "npc": NPCS}


@dataclass(frozen=True)
class RecordWrite:
    """One side-effecting repository call produced by a pure transition."""

    op: str
    collection: str
    record_id: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LockSignal:
    locked: bool
    reason: str | None


@dataclass(frozen=True)
class ChangeEvent:
    collection: str
    kind: str
    record_id: str
    record: dict[str, Any] | None


@dataclass(frozen=True)
class EncounterAggregate:
    encounter: dict[str, Any]
    participants: tuple[dict[str, Any], ...] = ()

    @property
    def status(self) -> str:
        return str(self.encounter.get("status", "draft"))

    @property
    def active_participants(self) -> list[dict[str, Any]]:
        return [participant for participant in self.participants if participant.get("is_active")]

    @property
    def current_participant(self) -> dict[str, Any] | None:
        current_id = self.encounter.get("current_participant_id")
        for participant in self.participants:
            if participant["id"] == current_id:
                return participant
        return None

    def participant(self, participant_id: str) -> dict[str, Any] | None:
        for participant in self.participants:
            if participant["id"] == participant_id:
                return participant
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "encounter": dict(self.encounter),
            "participants": [dict(participant) for participant in self.participants],
            "activeParticipantIds": [participant["id"] for participant in self.active_participants],
        }


@dataclass(frozen=True)
class TransitionResult:
    aggregate: EncounterAggregate
    writes: list[RecordWrite]
    lock: LockSignal | None = None
    engine_events: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class RestReport:
    rest_type: str
    changed: int
    examined: int
    updates: dict[str, int]


@dataclass(frozen=True)
class ConsumableReport:
    character: dict[str, Any]
    hp_changed: bool
    remaining_quantity: int
    effects: list[str]
    participant_ids: list[str]
