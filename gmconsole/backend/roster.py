"""Participant roster transitions and initiative ordering."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Iterable
import uuid

from gmconsole.backend.errors import DomainValidationError, InvalidTransitionError
from gmconsole.backend.hp import clamp_hp
from gmconsole.backend.models import (
    ENCOUNTERS,
    PARTICIPANT_TYPES,
    PARTICIPANTS,
    EncounterAggregate,
    RecordWrite,
    TransitionResult,
)
from gmconsole.backend.state import utc_now_iso

EDITABLE_STATUSES = ("draft", "active")


def sort_by_initiative(participants: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Highest initiative first; missing initiative counts as 0; ties keep insertion order."""
    return sorted(participants, key=lambda participant: -(participant.get("initiative") or 0))


def realign_turn(encounter: dict[str, Any], participants: list[dict[str, Any]]) -> dict[str, Any]:
    """Re-derive current_turn from current_participant_id after a roster change.

    When the current participant left the active list, the turn passes to
    whoever now holds the same position, wrapping to the top past the end.
    """
    if encounter.get("status") != "active":
        return encounter
    active = [participant for participant in participants if participant.get("is_active")]
    if not active:
        return dict(encounter, current_turn=0, current_participant_id=None)

    active_ids = [participant["id"] for participant in active]
    current_id = encounter.get("current_participant_id")
    if current_id in active_ids:
        return dict(encounter, current_turn=active_ids.index(current_id))

    position = int(encounter.get("current_turn") or 0)
    if position >= len(active_ids) or position < 0:
        position = 0
    return dict(encounter, current_turn=position, current_participant_id=active_ids[position])


def build_participant(
    encounter_id: str,
    participant_type: str,
    entity: dict[str, Any],
    ac: int | None = None,
) -> dict[str, Any]:
    """Snapshot an entity's HP and AC into a new participant row."""
    if participant_type not in PARTICIPANT_TYPES:
        raise DomainValidationError(f"Unknown participant type {participant_type!r}")
    max_hp = int(entity.get("max_hp") or 0)
    return {
        "id": str(uuid.uuid4()),
        "encounter_id": encounter_id,
        "participant_type": participant_type,
        "entity_id": entity["id"],
        "initiative": None,
        "current_hp": clamp_hp(int(entity.get("current_hp") or 0), max_hp),
        "max_hp": max_hp,
        "ac": int(ac if ac is not None else entity.get("ac") or 10),
        "notes": "",
        "is_active": True,
        "snapshot": dict(entity),
        "added_at": utc_now_iso(),
    }


def _ensure_editable(aggregate: EncounterAggregate, action: str) -> None:
    if aggregate.status not in EDITABLE_STATUSES:
        raise InvalidTransitionError(action, aggregate.status)


def _require(aggregate: EncounterAggregate, participant_id: str) -> dict[str, Any]:
    participant = aggregate.participant(participant_id)
    if participant is None:
        raise DomainValidationError(f"Participant {participant_id!r} is not in this encounter")
    return participant


def _finish(
    aggregate: EncounterAggregate,
    participants: list[dict[str, Any]],
    writes: list[RecordWrite],
    events: list[dict[str, Any]],
) -> TransitionResult:
    ordered = sort_by_initiative(participants)
    encounter = realign_turn(aggregate.encounter, ordered)
    patch = {
        key: encounter[key]
        for key in ("current_turn", "current_participant_id")
        if encounter.get(key) != aggregate.encounter.get(key)
    }
    if patch:
        writes = writes + [RecordWrite(op="update", collection=ENCOUNTERS, record_id=encounter["id"], payload=patch)]
        events = events + [{"kind": "turn_realigned", "participantId": encounter.get("current_participant_id")}]
    return TransitionResult(
        aggregate=EncounterAggregate(encounter=encounter, participants=tuple(ordered)),
        writes=writes,
        engine_events=events,
    )


def _insert_all(aggregate: EncounterAggregate, new_rows: list[dict[str, Any]]) -> TransitionResult:
    writes = [RecordWrite(op="insert", collection=PARTICIPANTS, record_id=row["id"], payload=row) for row in new_rows]
    events = [{"kind": "participant_added", "participantId": row["id"], "entityId": row["entity_id"]} for row in new_rows]
    return _finish(aggregate, list(aggregate.participants) + new_rows, writes, events)


def add_participant(
    aggregate: EncounterAggregate,
    participant_type: str,
    entity: dict[str, Any],
    ac: int | None = None,
) -> TransitionResult:
    _ensure_editable(aggregate, "ADD_PARTICIPANT")
    row = build_participant(aggregate.encounter["id"], participant_type, entity, ac=ac)
    return _insert_all(aggregate, [row])


def add_all_players(
    aggregate: EncounterAggregate,
    characters: Iterable[dict[str, Any]],
    ac_by_id: dict[str, int] | None = None,
) -> TransitionResult:
    """Add every character that is not already a player participant."""
    _ensure_editable(aggregate, "ADD_ALL_PLAYERS")
    ac_by_id = ac_by_id or {}
    present = {
        participant["entity_id"]
        for participant in aggregate.participants
        if participant.get("participant_type") == "player"
    }
    new_rows = []
    for character in characters:
        if character["id"] in present:
            continue
        present.add(character["id"])
        new_rows.append(build_participant(aggregate.encounter["id"], "player", character, ac=ac_by_id.get(character["id"])))
    return _insert_all(aggregate, new_rows)


def add_npc_copies(aggregate: EncounterAggregate, npc: dict[str, Any], count: int) -> TransitionResult:
    """Add count independent participants that all snapshot the same NPC."""
    _ensure_editable(aggregate, "ADD_NPC_COPIES")
    if count < 1:
        raise DomainValidationError("Copy count must be at least 1")
    new_rows = [build_participant(aggregate.encounter["id"], "npc", npc) for _ in range(count)]
    return _insert_all(aggregate, new_rows)


def remove_participant(aggregate: EncounterAggregate, participant_id: str) -> TransitionResult:
    _ensure_editable(aggregate, "REMOVE_PARTICIPANT")
    _require(aggregate, participant_id)
    remaining = [participant for participant in aggregate.participants if participant["id"] != participant_id]
    return _finish(
        aggregate,
        remaining,
        [RecordWrite(op="delete", collection=PARTICIPANTS, record_id=participant_id)],
        [{"kind": "participant_removed", "participantId": participant_id}],
    )


def _patch_participant(
    aggregate: EncounterAggregate,
    participant_id: str,
    patch: dict[str, Any],
    event: dict[str, Any],
) -> TransitionResult:
    participant = _require(aggregate, participant_id)
    updated = dict(participant, **patch)
    participants = [updated if p["id"] == participant_id else p for p in aggregate.participants]
    return _finish(
        aggregate,
        participants,
        [RecordWrite(op="update", collection=PARTICIPANTS, record_id=participant_id, payload=patch)],
        [event],
    )


def update_initiative(aggregate: EncounterAggregate, participant_id: str, initiative: int | None) -> TransitionResult:
    _ensure_editable(aggregate, "SET_INITIATIVE")
    value = None if initiative is None else int(initiative)
    return _patch_participant(
        aggregate,
        participant_id,
        {"initiative": value},
        {"kind": "initiative_set", "participantId": participant_id, "initiative": value},
    )


def toggle_active(aggregate: EncounterAggregate, participant_id: str) -> TransitionResult:
    _ensure_editable(aggregate, "TOGGLE_ACTIVE")
    is_active = not bool(_require(aggregate, participant_id).get("is_active"))
    return _patch_participant(
        aggregate,
        participant_id,
        {"is_active": is_active},
        {"kind": "participant_toggled", "participantId": participant_id, "isActive": is_active},
    )


def update_notes(aggregate: EncounterAggregate, participant_id: str, notes: str) -> TransitionResult:
    return _patch_participant(
        aggregate,
        participant_id,
        {"notes": notes},
        {"kind": "notes_updated", "participantId": participant_id},
    )


def with_participants(aggregate: EncounterAggregate, participants: Iterable[dict[str, Any]]) -> EncounterAggregate:
    return replace(aggregate, participants=tuple(sort_by_initiative(participants)))
