"""Encounter orchestration: load aggregate, reduce, issue writes, signal the lock."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any
import uuid

from gmconsole.backend.engine import apply_gm_action
from gmconsole.backend.errors import DomainValidationError, RecordNotFoundError
from gmconsole.backend.inventory import load_inventory
from gmconsole.backend.lock import CombatLock
from gmconsole.backend.models import (
    ABILITIES,
    ABILITY_GRANTS,
    CHARACTERS,
    ENCOUNTERS,
    ENTITY_COLLECTIONS,
    NPCS,
    PARTICIPANTS,
    EncounterAggregate,
    RecordWrite,
    TransitionResult,
)
from gmconsole.backend.roster import realign_turn, sort_by_initiative
from gmconsole.backend.state import build_encounter
from gmconsole.backend.stats import compute_stats
from gmconsole.backend.store import Repository

logger = logging.getLogger(__name__)


@dataclass
class EncounterService:
    repository: Repository
    lock: CombatLock

    def create_encounter(self, name: str, description: str | None = None) -> dict[str, Any]:
        encounter = build_encounter(encounter_id=str(uuid.uuid4()), name=name, description=description)
        return self.repository.insert(ENCOUNTERS, encounter)

    def list_encounters(self) -> list[dict[str, Any]]:
        encounters = self.repository.list(ENCOUNTERS)
        return sorted(encounters, key=lambda encounter: encounter.get("created_at") or "", reverse=True)

    def load(self, encounter_id: str) -> EncounterAggregate:
        encounter = self.repository.get(ENCOUNTERS, encounter_id)
        if encounter is None:
            raise RecordNotFoundError(ENCOUNTERS, encounter_id)
        participants = sort_by_initiative(self.repository.list(PARTICIPANTS, {"encounter_id": encounter_id}))
        return EncounterAggregate(encounter=realign_turn(encounter, participants), participants=tuple(participants))

    def delete_encounter(self, encounter_id: str) -> None:
        """Participants go first so no orphaned rows remain if the encounter delete fails."""
        aggregate = self.load(encounter_id)
        for participant in aggregate.participants:
            self.repository.delete(PARTICIPANTS, participant["id"])
        self.repository.delete(ENCOUNTERS, encounter_id)
        if aggregate.status == "active":
            self.lock.set_locked(False, None)
        logger.info("Deleted encounter %s with %d participants", encounter_id, len(aggregate.participants))

    def apply(self, encounter_id: str, action: dict[str, Any]) -> TransitionResult:
        aggregate = self.load(encounter_id)
        resolved = self._resolve_action(aggregate, action)
        result = apply_gm_action(aggregate, resolved)
        self.issue_writes(result.writes)
        if result.lock is not None:
            self.lock.set_locked(result.lock.locked, result.lock.reason)
        return result

    def issue_writes(self, writes: list[RecordWrite]) -> None:
        """Issue writes in order as independent calls; a failure leaves earlier writes applied."""
        for write in writes:
            if write.op == "insert":
                self.repository.insert(write.collection, write.payload)
            elif write.op == "update":
                self.repository.update(write.collection, write.record_id, write.payload)
            elif write.op == "delete":
                self.repository.delete(write.collection, write.record_id)
            else:
                raise ValueError(f"Unknown write op {write.op!r}")

    def _resolve_action(self, aggregate: EncounterAggregate, action: dict[str, Any]) -> dict[str, Any]:
        """Fill in the records a pure transition needs from the repository."""
        action_type = str(action.get("type", "")).upper()
        resolved = dict(action, type=action_type)

        if action_type == "START" and not aggregate.participants:
            raise DomainValidationError("Add participants before starting the encounter")
        if action_type == "ADD_PARTICIPANT" and "entity" not in resolved:
            participant_type = str(action.get("participantType", ""))
            collection = ENTITY_COLLECTIONS.get(participant_type)
            if collection is None:
                raise DomainValidationError(f"Unknown participant type {participant_type!r}")
            entity = self._get_entity(collection, str(action.get("entityId", "")))
            resolved["entity"] = entity
            if participant_type == "player":
                resolved["ac"] = self._effective_ac(entity)
        elif action_type == "ADD_ALL_PLAYERS" and "characters" not in resolved:
            characters = self.repository.list(CHARACTERS)
            resolved["characters"] = characters
            resolved["acById"] = {character["id"]: self._effective_ac(character) for character in characters}
        elif action_type == "ADD_NPC_COPIES" and "npc" not in resolved:
            resolved["npc"] = self._get_entity(NPCS, str(action.get("npcId", "")))
        return resolved

    def _get_entity(self, collection: str, entity_id: str) -> dict[str, Any]:
        entity = self.repository.get(collection, entity_id)
        if entity is None:
            raise RecordNotFoundError(collection, entity_id)
        return entity

    def _effective_ac(self, character: dict[str, Any]) -> int:
        return compute_stats(character, load_inventory(self.repository, character["id"])).ac

    def participant_resources(self, participant: dict[str, Any]) -> dict[str, Any]:
        """Entity record, effective stats and held abilities for one participant."""
        collection = ENTITY_COLLECTIONS.get(str(participant.get("participant_type")), CHARACTERS)
        entity = self.repository.get(collection, participant["entity_id"]) or dict(participant.get("snapshot") or {})
        if participant.get("participant_type") != "player":
            return {"entity": entity, "stats": compute_stats(entity, []).to_dict(), "abilities": []}

        abilities = []
        for grant in self.repository.list(ABILITY_GRANTS, {"character_id": participant["entity_id"]}):
            ability = self.repository.get(ABILITIES, grant["ability_id"])
            if ability is not None:
                abilities.append(dict(grant, ability=ability))
        stats = compute_stats(entity, load_inventory(self.repository, participant["entity_id"]))
        return {"entity": entity, "stats": stats.to_dict(), "abilities": abilities}
