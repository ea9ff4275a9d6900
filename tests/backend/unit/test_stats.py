import pytest

from gmconsole.backend.errors import DomainValidationError
from gmconsole.backend.stats import (
    check_can_equip,
    compute_stats,
    format_modifier,
    skill_column,
    stat_modifier,
    weapon_to_hit,
)


def _row(item: dict, equipped: bool = True) -> dict:
    return {"id": f"inv-{item['id']}", "is_equipped": equipped, "quantity": 1, "item": item}


@pytest.mark.parametrize(
    ("stored", "expected"),
    [(12, 2), (10, 0), (8, -2), (2, 2), (0, 0), (-1, -1)],
)
def test_stat_modifier_handles_both_encodings(stored: int, expected: int) -> None:
    assert stat_modifier(stored) == expected


def test_format_modifier_signs_value() -> None:
    assert format_modifier(3) == "+3"
    assert format_modifier(0) == "+0"
    assert format_modifier(-2) == "-2"


def test_weapon_to_hit_by_rank() -> None:
    assert [weapon_to_hit(rank) for rank in range(4)] == [-2, 0, 1, 2]


def test_skill_column_snake_cases_name() -> None:
    assert skill_column("Sleight of Hand") == "skill_sleight_of_hand"


def test_compute_stats_only_counts_equipped_items() -> None:
    base = {"id": "c1", "str": 2, "ac": 12, "max_hp": 20}
    inventory = [
        _row({"id": "ring", "type": "accessory", "str_mod": 1}),
        _row({"id": "belt", "type": "accessory", "str_mod": 2, "ac_mod": 1}),
        _row({"id": "gauntlet", "type": "accessory", "str_mod": 5}, equipped=False),
    ]

    stats = compute_stats(base, inventory)

    assert stats.scores["str"] == 5
    assert stats.ac == 13
    assert stats.max_hp == 20
    assert stats.speed == 30
    assert stats.implant_capacity == 3


def test_compute_stats_skills_combine_rank_ability_and_items() -> None:
    base = {"id": "c1", "dex": 14, "skill_stealth": 2}
    inventory = [_row({"id": "cloak", "type": "accessory", "skill_mods": {"Stealth": 1}})]

    stats = compute_stats(base, inventory)

    assert stats.skills["Stealth"] == 2 + 4 + 1
    assert stats.skill_bonuses == {"Stealth": 1}


def test_compute_stats_applies_non_proficient_armor_penalty() -> None:
    base = {"id": "c1", "class": "Icon", "ac": 10, "speed": 30}
    inventory = [_row({"id": "plate", "type": "armor", "armor_subtype": "heavy", "ac_mod": 6})]

    stats = compute_stats(base, inventory)

    assert stats.armor_penalty is True
    assert stats.ac == 14
    assert stats.speed == 20


def test_compute_stats_proficient_armor_has_no_penalty() -> None:
    base = {"id": "c1", "class": "solo", "ac": 10}
    inventory = [_row({"id": "plate", "type": "armor", "armor_subtype": "heavy", "ac_mod": 6})]

    stats = compute_stats(base, inventory)

    assert stats.armor_penalty is False
    assert stats.ac == 16


def test_compute_stats_weapon_ranks_and_implant_capacity() -> None:
    base = {"id": "c1", "weapon_rank_sidearms": 3, "implant_capacity": 4}
    inventory = [_row({"id": "eye", "type": "cyberware", "ic_cost": 3, "ic_mod": 1})]

    stats = compute_stats(base, inventory)

    assert stats.weapon_to_hit["sidearms"] == 2
    assert stats.weapon_to_hit["heavy"] == -2
    assert stats.implant_capacity == 5
    assert stats.ic_used == 3
    assert stats.ic_remaining == 2
    assert stats.to_dict()["icRemaining"] == 2


def test_check_can_equip_enforces_slot_limits() -> None:
    armored = compute_stats({"id": "c1"}, [_row({"id": "vest", "type": "armor", "armor_subtype": "light"})])
    with pytest.raises(DomainValidationError):
        check_can_equip(armored, {"id": "coat", "type": "armor"})

    weapons = [_row({"id": f"gun-{index}", "type": "weapon"}) for index in range(3)]
    with pytest.raises(DomainValidationError):
        check_can_equip(compute_stats({"id": "c1"}, weapons), {"id": "gun-4", "type": "weapon"})

    check_can_equip(compute_stats({"id": "c1"}, weapons[:2]), {"id": "gun-3", "type": "weapon"})


def test_check_can_equip_rejects_cyberware_over_capacity() -> None:
    stats = compute_stats({"id": "c1"}, [_row({"id": "arm", "type": "cyberware", "ic_cost": 2})])

    check_can_equip(stats, {"id": "chip", "type": "cyberware", "ic_cost": 1})
    with pytest.raises(DomainValidationError):
        check_can_equip(stats, {"id": "spine", "type": "cyberware", "ic_cost": 2})
