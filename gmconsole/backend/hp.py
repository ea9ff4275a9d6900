"""Write-through of combat HP to participant rows and canonical character/NPC rows."""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import Any

from gmconsole.backend.errors import DomainValidationError
from gmconsole.backend.models import (
    ENCOUNTERS,
    ENTITY_COLLECTIONS,
    PARTICIPANTS,
    EncounterAggregate,
    RecordWrite,
    TransitionResult,
)
from gmconsole.backend.store import Repository

logger = logging.getLogger(__name__)


def clamp_hp(value: int, max_hp: int) -> int:
    return max(0, min(int(value), int(max_hp)))


def hp_writes(participant: dict[str, Any], new_hp: int) -> list[RecordWrite]:
    """Participant row first, then the canonical entity row, both with the same value."""
    writes = [RecordWrite(op="update", collection=PARTICIPANTS, record_id=participant["id"], payload={"current_hp": new_hp})]
    collection = ENTITY_COLLECTIONS.get(str(participant.get("participant_type")))
    if collection is not None and participant.get("entity_id"):
        writes.append(
            RecordWrite(op="update", collection=collection, record_id=participant["entity_id"], payload={"current_hp": new_hp})
        )
    return writes


def set_participant_hp(aggregate: EncounterAggregate, participant_id: str, requested_hp: int) -> TransitionResult:
    participant = aggregate.participant(participant_id)
    if participant is None:
        raise DomainValidationError(f"Participant {participant_id!r} is not in this encounter")

    max_hp = int(participant.get("max_hp") or 0)
    new_hp = clamp_hp(requested_hp, max_hp)
    old_hp = int(participant.get("current_hp") or 0)
    updated = dict(participant, current_hp=new_hp)
    participants = tuple(updated if p["id"] == participant_id else p for p in aggregate.participants)

    return TransitionResult(
        aggregate=replace(aggregate, participants=participants),
        writes=hp_writes(participant, new_hp),
        engine_events=[
            {"kind": "hp_changed", "participantId": participant_id, "from": old_hp, "to": new_hp, "maxHp": max_hp}
        ],
    )


def apply_hp_delta(aggregate: EncounterAggregate, participant_id: str, delta: int) -> TransitionResult:
    """Damage is a negative delta, healing a positive one."""
    participant = aggregate.participant(participant_id)
    if participant is None:
        raise DomainValidationError(f"Participant {participant_id!r} is not in this encounter")
    return set_participant_hp(aggregate, participant_id, int(participant.get("current_hp") or 0) + int(delta))


def full_heal(aggregate: EncounterAggregate, participant_id: str) -> TransitionResult:
    participant = aggregate.participant(participant_id)
    if participant is None:
        raise DomainValidationError(f"Participant {participant_id!r} is not in this encounter")
    return set_participant_hp(aggregate, participant_id, int(participant.get("max_hp") or 0))


def propagate_entity_hp(repository: Repository, participant_type: str, entity_id: str, new_hp: int) -> list[str]:
    """Push a canonical HP change into every participant of an active encounter.

    Used when HP changed outside the encounter screen (consumables). The
    participant's max_hp snapshot is left as captured at add-time.
    """
    updated: list[str] = []
    for participant in repository.list(PARTICIPANTS, {"participant_type": participant_type, "entity_id": entity_id}):
        encounter = repository.get(ENCOUNTERS, participant["encounter_id"])
        if encounter is None or encounter.get("status") != "active":
            continue
        clamped = clamp_hp(new_hp, int(participant.get("max_hp") or 0))
        repository.update(PARTICIPANTS, participant["id"], {"current_hp": clamped})
        updated.append(participant["id"])
    if updated:
        logger.info("Synced HP %d for %s %s into %d participant(s)", new_hp, participant_type, entity_id, len(updated))
    return updated
