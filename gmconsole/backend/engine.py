"""Reducer and engine helpers for game-master actions on an encounter."""

from __future__ import annotations

import logging
from typing import Any

from gmconsole.backend import hp, roster
from gmconsole.backend.errors import DomainValidationError, InvalidTransitionError
from gmconsole.backend.models import ENCOUNTERS, EncounterAggregate, LockSignal, RecordWrite, TransitionResult
from gmconsole.backend.state import utc_now_iso

logger = logging.getLogger(__name__)


def apply_gm_action(aggregate: EncounterAggregate, action: dict[str, Any]) -> TransitionResult:
    """Apply a game-master action and return the new aggregate plus the writes to issue."""
    action_type = str(action.get("type", "")).upper()
    if action_type == "START":
        return _apply_start(aggregate)
    if action_type == "NEXT_TURN":
        return _apply_next_turn(aggregate)
    if action_type == "PREV_TURN":
        return _apply_prev_turn(aggregate)
    if action_type == "END":
        return _apply_end(aggregate)
    if action_type == "ARCHIVE":
        return _apply_archive(aggregate)
    if action_type == "ADD_PARTICIPANT":
        return roster.add_participant(
            aggregate,
            participant_type=str(action.get("participantType", "")),
            entity=_required_dict(action, "entity"),
            ac=action.get("ac"),
        )
    if action_type == "ADD_ALL_PLAYERS":
        return roster.add_all_players(aggregate, action.get("characters", []), ac_by_id=action.get("acById"))
    if action_type == "ADD_NPC_COPIES":
        return roster.add_npc_copies(aggregate, _required_dict(action, "npc"), _int_field(action, "count", 1))
    if action_type == "REMOVE_PARTICIPANT":
        return roster.remove_participant(aggregate, _participant_id(action))
    if action_type == "SET_INITIATIVE":
        return roster.update_initiative(aggregate, _participant_id(action), _optional_int_field(action, "initiative"))
    if action_type == "TOGGLE_ACTIVE":
        return roster.toggle_active(aggregate, _participant_id(action))
    if action_type == "UPDATE_NOTES":
        return roster.update_notes(aggregate, _participant_id(action), str(action.get("notes", "")))
    if action_type == "APPLY_HP_DELTA":
        _ensure_combat_open(aggregate, action_type)
        return hp.apply_hp_delta(aggregate, _participant_id(action), _int_field(action, "delta", 0))
    if action_type == "SET_HP":
        _ensure_combat_open(aggregate, action_type)
        return hp.set_participant_hp(aggregate, _participant_id(action), _int_field(action, "hp", 0))
    if action_type == "FULL_HEAL":
        _ensure_combat_open(aggregate, action_type)
        return hp.full_heal(aggregate, _participant_id(action))
    raise DomainValidationError(f"Unknown action type {action_type!r}")


def _participant_id(action: dict[str, Any]) -> str:
    participant_id = action.get("participantId")
    if not isinstance(participant_id, str) or participant_id == "":
        raise DomainValidationError("participantId is required")
    return participant_id


def _int_field(action: dict[str, Any], key: str, default: int) -> int:
    value = action.get(key, default)
    if isinstance(value, bool):
        raise DomainValidationError(f"{key} must be a whole number")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise DomainValidationError(f"{key} must be a whole number, got {value!r}") from exc


def _optional_int_field(action: dict[str, Any], key: str) -> int | None:
    if action.get(key) is None:
        return None
    return _int_field(action, key, 0)


def _required_dict(action: dict[str, Any], key: str) -> dict[str, Any]:
    value = action.get(key)
    if not isinstance(value, dict) or not value.get("id"):
        raise DomainValidationError(f"{key} with an id is required")
    return value


def _ensure_combat_open(aggregate: EncounterAggregate, action_type: str) -> None:
    if aggregate.status not in roster.EDITABLE_STATUSES:
        raise InvalidTransitionError(action_type, aggregate.status)


def _ensure_status(aggregate: EncounterAggregate, action_type: str, *allowed: str) -> None:
    if aggregate.status not in allowed:
        raise InvalidTransitionError(action_type, aggregate.status)


def _patched(
    aggregate: EncounterAggregate,
    patch: dict[str, Any],
    events: list[dict[str, Any]],
    lock: LockSignal | None = None,
) -> TransitionResult:
    encounter = dict(aggregate.encounter, **patch)
    return TransitionResult(
        aggregate=EncounterAggregate(encounter=encounter, participants=aggregate.participants),
        writes=[RecordWrite(op="update", collection=ENCOUNTERS, record_id=encounter["id"], payload=patch)],
        lock=lock,
        engine_events=events,
    )


def _apply_start(aggregate: EncounterAggregate) -> TransitionResult:
    _ensure_status(aggregate, "START", "draft")
    if not aggregate.participants:
        logger.warning("Encounter %s has no participants; start ignored", aggregate.encounter.get("id"))
        return TransitionResult(aggregate=aggregate, writes=[])

    ordered = roster.with_participants(aggregate, aggregate.participants)
    active = ordered.active_participants
    first_id = active[0]["id"] if active else None
    patch = {
        "status": "active",
        "round_number": 1,
        "current_turn": 0,
        "current_participant_id": first_id,
        "started_at": utc_now_iso(),
    }
    name = str(aggregate.encounter.get("name") or "")
    logger.info("Encounter %s started with %d participants", aggregate.encounter.get("id"), len(ordered.participants))
    return _patched(
        ordered,
        patch,
        [
            {"kind": "encounter_started", "name": name},
            {"kind": "timing", "timing": "round_start", "round": 1},
            {"kind": "timing", "timing": "turn_start", "participantId": first_id},
        ],
        lock=LockSignal(locked=True, reason=name),
    )


def _turn_state(aggregate: EncounterAggregate) -> tuple[list[dict[str, Any]], int, int]:
    active = aggregate.active_participants
    return active, int(aggregate.encounter.get("current_turn", 0)), int(aggregate.encounter.get("round_number", 1))


def _apply_next_turn(aggregate: EncounterAggregate) -> TransitionResult:
    _ensure_status(aggregate, "NEXT_TURN", "active")
    active, turn_index, round_number = _turn_state(aggregate)
    if not active:
        return TransitionResult(aggregate=aggregate, writes=[])

    current_id = active[turn_index]["id"] if turn_index < len(active) else None
    events: list[dict[str, Any]] = [{"kind": "timing", "timing": "turn_end", "participantId": current_id}]

    new_turn_index = turn_index + 1
    wrapped = new_turn_index >= len(active)
    if wrapped:
        new_turn_index = 0
        round_number += 1
        events.append({"kind": "timing", "timing": "round_end"})
        events.append({"kind": "timing", "timing": "round_start", "round": round_number})

    new_id = active[new_turn_index]["id"]
    events.append({"kind": "timing", "timing": "turn_start", "participantId": new_id})
    return _patched(
        aggregate,
        {"current_turn": new_turn_index, "round_number": round_number, "current_participant_id": new_id},
        events,
    )


def _apply_prev_turn(aggregate: EncounterAggregate) -> TransitionResult:
    _ensure_status(aggregate, "PREV_TURN", "active")
    active, turn_index, round_number = _turn_state(aggregate)
    if not active:
        return TransitionResult(aggregate=aggregate, writes=[])

    new_turn_index = turn_index - 1
    if new_turn_index < 0:
        if round_number <= 1:
            new_turn_index = 0
        else:
            new_turn_index = len(active) - 1
            round_number -= 1

    new_id = active[new_turn_index]["id"]
    return _patched(
        aggregate,
        {"current_turn": new_turn_index, "round_number": round_number, "current_participant_id": new_id},
        [{"kind": "timing", "timing": "turn_rewind", "participantId": new_id, "round": round_number}],
    )


def _apply_end(aggregate: EncounterAggregate) -> TransitionResult:
    _ensure_status(aggregate, "END", "active")
    logger.info("Encounter %s completed", aggregate.encounter.get("id"))
    return _patched(
        aggregate,
        {"status": "completed", "completed_at": utc_now_iso()},
        [{"kind": "encounter_completed"}],
        lock=LockSignal(locked=False, reason=None),
    )


def _apply_archive(aggregate: EncounterAggregate) -> TransitionResult:
    _ensure_status(aggregate, "ARCHIVE", "active", "completed")
    lock = LockSignal(locked=False, reason=None) if aggregate.status == "active" else None
    patch: dict[str, Any] = {"status": "archived"}
    if not aggregate.encounter.get("completed_at"):
        patch["completed_at"] = utc_now_iso()
    return _patched(aggregate, patch, [{"kind": "encounter_archived"}], lock=lock)
