import pytest

from gmconsole.backend.engine import apply_gm_action
from gmconsole.backend.errors import DomainValidationError, InvalidTransitionError
from gmconsole.backend.models import ENCOUNTERS, PARTICIPANTS, EncounterAggregate


def _participant(participant_id: str, initiative: int | None = None, is_active: bool = True) -> dict:
    return {
        "id": participant_id,
        "encounter_id": "enc-1",
        "participant_type": "npc",
        "entity_id": f"npc-{participant_id}",
        "initiative": initiative,
        "current_hp": 10,
        "max_hp": 10,
        "ac": 12,
        "notes": "",
        "is_active": is_active,
    }


def _aggregate(status: str = "active", turn: int = 0, round_number: int = 1, participants=None) -> EncounterAggregate:
    participants = participants if participants is not None else [_participant("a", 20), _participant("b", 15), _participant("c", 10)]
    current = [p for p in participants if p["is_active"]]
    encounter = {
        "id": "enc-1",
        "name": "Ambush",
        "status": status,
        "round_number": round_number,
        "current_turn": turn,
        "current_participant_id": current[turn]["id"] if status == "active" and current else None,
    }
    return EncounterAggregate(encounter=encounter, participants=tuple(participants))


def test_start_sorts_by_initiative_and_locks_players() -> None:
    aggregate = _aggregate(
        status="draft",
        participants=[_participant("slow", 3), _participant("fast", 18), _participant("mid", 11)],
    )

    result = apply_gm_action(aggregate, {"type": "START"})

    encounter = result.aggregate.encounter
    assert encounter["status"] == "active"
    assert encounter["round_number"] == 1
    assert encounter["current_turn"] == 0
    assert encounter["current_participant_id"] == "fast"
    assert encounter["started_at"]
    assert [p["id"] for p in result.aggregate.participants] == ["fast", "mid", "slow"]
    assert result.lock is not None
    assert result.lock.locked is True
    assert result.lock.reason == "Ambush"
    assert result.writes[0].collection == ENCOUNTERS


def test_start_without_participants_does_nothing() -> None:
    aggregate = _aggregate(status="draft", participants=[])

    result = apply_gm_action(aggregate, {"type": "START"})

    assert result.writes == []
    assert result.lock is None
    assert result.aggregate.status == "draft"


def test_start_from_active_is_rejected() -> None:
    with pytest.raises(InvalidTransitionError):
        apply_gm_action(_aggregate(status="active"), {"type": "START"})


def test_next_turn_advances_index_without_wrap() -> None:
    result = apply_gm_action(_aggregate(turn=0), {"type": "NEXT_TURN"})

    assert result.aggregate.encounter["current_turn"] == 1
    assert result.aggregate.encounter["round_number"] == 1
    assert result.aggregate.encounter["current_participant_id"] == "b"
    assert [event["timing"] for event in result.engine_events] == ["turn_end", "turn_start"]


def test_next_turn_wraps_and_increments_round() -> None:
    result = apply_gm_action(_aggregate(turn=2, round_number=1), {"type": "NEXT_TURN"})

    assert result.aggregate.encounter["current_turn"] == 0
    assert result.aggregate.encounter["round_number"] == 2
    assert [event["timing"] for event in result.engine_events] == [
        "turn_end",
        "round_end",
        "round_start",
        "turn_start",
    ]


def test_next_turn_skips_inactive_participants() -> None:
    participants = [_participant("a", 20), _participant("b", 15, is_active=False), _participant("c", 10)]

    result = apply_gm_action(_aggregate(turn=0, participants=participants), {"type": "NEXT_TURN"})

    assert result.aggregate.encounter["current_participant_id"] == "c"
    assert result.aggregate.encounter["current_turn"] == 1


def test_prev_turn_goes_back_a_round() -> None:
    result = apply_gm_action(_aggregate(turn=0, round_number=3), {"type": "PREV_TURN"})

    assert result.aggregate.encounter["current_turn"] == 2
    assert result.aggregate.encounter["round_number"] == 2
    assert result.aggregate.encounter["current_participant_id"] == "c"


def test_prev_turn_stops_at_first_turn_of_first_round() -> None:
    result = apply_gm_action(_aggregate(turn=0, round_number=1), {"type": "PREV_TURN"})

    assert result.aggregate.encounter["current_turn"] == 0
    assert result.aggregate.encounter["round_number"] == 1


def test_turn_actions_with_no_active_participants_are_no_ops() -> None:
    participants = [_participant("a", 5, is_active=False)]
    aggregate = _aggregate(participants=participants)

    assert apply_gm_action(aggregate, {"type": "NEXT_TURN"}).writes == []
    assert apply_gm_action(aggregate, {"type": "PREV_TURN"}).writes == []


@pytest.mark.parametrize("action_type", ["NEXT_TURN", "PREV_TURN", "END"])
def test_turn_actions_require_active_encounter(action_type: str) -> None:
    with pytest.raises(InvalidTransitionError):
        apply_gm_action(_aggregate(status="draft"), {"type": action_type})


def test_end_completes_and_unlocks() -> None:
    result = apply_gm_action(_aggregate(), {"type": "END"})

    assert result.aggregate.status == "completed"
    assert result.aggregate.encounter["completed_at"]
    assert result.lock is not None
    assert result.lock.locked is False


def test_archive_from_completed_keeps_lock_untouched() -> None:
    completed = _aggregate(status="completed")
    completed = EncounterAggregate(encounter=dict(completed.encounter, completed_at="2026-01-01T00:00:00+00:00"), participants=completed.participants)

    result = apply_gm_action(completed, {"type": "ARCHIVE"})

    assert result.aggregate.status == "archived"
    assert result.lock is None
    assert "completed_at" not in result.writes[0].payload


def test_archive_from_active_releases_lock() -> None:
    result = apply_gm_action(_aggregate(), {"type": "ARCHIVE"})

    assert result.aggregate.status == "archived"
    assert result.lock is not None
    assert result.lock.locked is False


def test_archive_from_draft_is_rejected() -> None:
    with pytest.raises(InvalidTransitionError):
        apply_gm_action(_aggregate(status="draft"), {"type": "ARCHIVE"})


def test_hp_actions_write_participant_and_entity() -> None:
    result = apply_gm_action(_aggregate(), {"type": "APPLY_HP_DELTA", "participantId": "a", "delta": -4})

    assert result.aggregate.participant("a")["current_hp"] == 6
    assert [(write.collection, write.record_id) for write in result.writes] == [
        (PARTICIPANTS, "a"),
        ("npcs", "npc-a"),
    ]


def test_hp_actions_are_rejected_after_completion() -> None:
    with pytest.raises(InvalidTransitionError):
        apply_gm_action(_aggregate(status="completed"), {"type": "FULL_HEAL", "participantId": "a"})


def test_unknown_action_is_rejected() -> None:
    with pytest.raises(DomainValidationError):
        apply_gm_action(_aggregate(), {"type": "CAST_FIREBALL"})


def test_participant_actions_require_participant_id() -> None:
    with pytest.raises(DomainValidationError):
        apply_gm_action(_aggregate(), {"type": "TOGGLE_ACTIVE"})


@pytest.mark.parametrize(
    "action",
    [
        {"type": "SET_INITIATIVE", "participantId": "a", "initiative": "fast"},
        {"type": "APPLY_HP_DELTA", "participantId": "a", "delta": "lots"},
        {"type": "SET_HP", "participantId": "a", "hp": None},
        {"type": "APPLY_HP_DELTA", "participantId": "a", "delta": True},
    ],
)
def test_non_numeric_action_fields_are_rejected(action: dict) -> None:
    with pytest.raises(DomainValidationError):
        apply_gm_action(_aggregate(), action)


def test_add_npc_copies_rejects_non_numeric_count() -> None:
    with pytest.raises(DomainValidationError):
        apply_gm_action(_aggregate(status="draft"), {"type": "ADD_NPC_COPIES", "npc": {"id": "npc-1"}, "count": "three"})


def test_numeric_strings_and_cleared_initiative_are_accepted() -> None:
    assert apply_gm_action(_aggregate(), {"type": "SET_INITIATIVE", "participantId": "c", "initiative": "25"}).aggregate.participants[0]["id"] == "c"
    cleared = apply_gm_action(_aggregate(), {"type": "SET_INITIATIVE", "participantId": "a", "initiative": None})
    assert cleared.aggregate.participant("a")["initiative"] is None
