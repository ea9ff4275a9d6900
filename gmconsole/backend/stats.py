"""Effective character stats from base records plus equipped item modifiers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from gmconsole.backend.errors import DomainValidationError

ABILITY_SCORES = ("str", "dex", "con", "wis", "int", "cha")

# Item column for each aggregated stat.
MODIFIER_FIELDS = {
    "str": "str_mod",
    "dex": "dex_mod",
    "con": "con_mod",
    "wis": "wis_mod",
    "int": "int_mod",
    "cha": "cha_mod",
    "hp": "hp_mod",
    "ac": "ac_mod",
    "speed": "speed_mod",
    "init": "init_mod",
    "ic": "ic_mod",
}

SKILL_ABILITIES = {
    "Acrobatics": "dex",
    "Animal Handling": "wis",
    "Athletics": "str",
    "Biology": "int",
    "Deception": "cha",
    "Hacking": "int",
    "History": "int",
    "Insight": "wis",
    "Intimidation": "cha",
    "Investigation": "int",
    "Medicine": "wis",
    "Nature": "int",
    "Perception": "wis",
    "Performance": "cha",
    "Persuasion": "cha",
    "Sleight of Hand": "dex",
    "Stealth": "dex",
    "Survival": "wis",
}

WEAPON_TYPES = ("unarmed", "melee", "sidearms", "longarms", "heavy")

DEFAULT_ARMOR_PROFICIENCIES = ("clothes", "light")
CLASS_ARMOR_PROFICIENCIES = {
    "bruiser": ("light", "medium", "heavy", "shield"),
    "icon": ("clothes", "light"),
    "hexer": ("clothes", "light", "medium"),
    "apostle": ("clothes", "light", "medium", "shield"),
    "biohack": ("clothes", "light", "medium"),
    "solo": ("clothes", "light", "medium", "heavy", "shield"),
    "striker": ("clothes", "light"),
    "vow": ("clothes", "medium", "heavy", "shield"),
    "tracker": ("clothes", "light", "medium"),
    "ghost": ("clothes", "light"),
    "spark": ("clothes", "light"),
    "pact": ("clothes", "light", "medium"),
    "coder": ("clothes", "light"),
}

DEFAULT_SPEED = 30
DEFAULT_IMPLANT_CAPACITY = 3
MAX_EQUIPPED_ARMOR = 1
MAX_EQUIPPED_WEAPONS = 3
ARMOR_PENALTY_AC = 2
ARMOR_PENALTY_SPEED = 10


def stat_modifier(stat: int) -> int:
    """Convert a stored ability score into its modifier.

    Older characters stored scores as ``10 + bonus`` while newer ones store the
    bonus directly. Any value of 8 or more is treated as the old encoding. A
    legacy score between 0 and 7 cannot be told apart from a direct modifier
    and is returned unchanged.
    """
    if stat >= 8:
        return stat - 10
    return stat


def format_modifier(modifier: int) -> str:
    return f"+{modifier}" if modifier >= 0 else f"{modifier}"


def weapon_to_hit(rank: int) -> int:
    """Rank 0 is unproficient (-2); rank 1 is +0, rank 2 is +1 and so on."""
    if rank == 0:
        return -2
    return rank - 1


def skill_column(skill_name: str) -> str:
    return "skill_" + skill_name.lower().replace(" ", "_")


def item_of(inventory_row: dict[str, Any]) -> dict[str, Any]:
    """Return the joined item of an inventory row, or the row itself when flat."""
    item = inventory_row.get("item")
    return item if isinstance(item, dict) else inventory_row


def equipped_items(inventory: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return [item_of(row) for row in inventory if row.get("is_equipped")]


def sum_modifiers(items: Iterable[dict[str, Any]]) -> tuple[dict[str, int], dict[str, int]]:
    modifiers = {stat: 0 for stat in MODIFIER_FIELDS}
    skill_bonuses: dict[str, int] = {}
    for item in items:
        for stat, column in MODIFIER_FIELDS.items():
            modifiers[stat] += int(item.get(column) or 0)
        for skill, bonus in (item.get("skill_mods") or {}).items():
            skill_bonuses[skill] = skill_bonuses.get(skill, 0) + int(bonus)
    return modifiers, skill_bonuses


@dataclass(frozen=True)
class EffectiveStats:
    scores: dict[str, int]
    max_hp: int
    ac: int
    speed: int
    initiative: int
    implant_capacity: int
    skills: dict[str, int]
    skill_bonuses: dict[str, int]
    modifiers: dict[str, int]
    armor_penalty: bool = False
    equipped_armor: int = 0
    equipped_weapons: int = 0
    ic_used: int = 0
    weapon_to_hit: dict[str, int] = field(default_factory=dict)

    @property
    def ic_remaining(self) -> int:
        return self.implant_capacity - self.ic_used

    def to_dict(self) -> dict[str, Any]:
        return {
            "scores": dict(self.scores),
            "maxHp": self.max_hp,
            "ac": self.ac,
            "speed": self.speed,
            "initiative": self.initiative,
            "implantCapacity": self.implant_capacity,
            "icUsed": self.ic_used,
            "icRemaining": self.ic_remaining,
            "skills": dict(self.skills),
            "skillBonuses": dict(self.skill_bonuses),
            "modifiers": dict(self.modifiers),
            "armorPenalty": self.armor_penalty,
            "equippedArmor": self.equipped_armor,
            "equippedWeapons": self.equipped_weapons,
            "weaponToHit": dict(self.weapon_to_hit),
        }


def compute_stats(base: dict[str, Any], inventory: Iterable[dict[str, Any]]) -> EffectiveStats:
    """Aggregate a character or NPC record with its equipped inventory."""
    items = equipped_items(inventory)
    modifiers, skill_bonuses = sum_modifiers(items)

    proficiencies = CLASS_ARMOR_PROFICIENCIES.get(str(base.get("class") or "").lower(), DEFAULT_ARMOR_PROFICIENCIES)
    armor = [item for item in items if item.get("type") == "armor"]
    weapons = [item for item in items if item.get("type") == "weapon"]
    ic_used = sum(int(item.get("ic_cost") or 0) for item in items if item.get("type") == "cyberware")
    armor_penalty = any(item.get("armor_subtype") and item["armor_subtype"] not in proficiencies for item in armor)

    scores = {stat: int(base.get(stat) or 0) + modifiers[stat] for stat in ABILITY_SCORES}
    ac = int(base.get("ac") or 0) + modifiers["ac"]
    speed = int(base.get("speed") or DEFAULT_SPEED) + modifiers["speed"]
    if armor_penalty:
        ac -= ARMOR_PENALTY_AC
        speed -= ARMOR_PENALTY_SPEED

    skills = {
        name: int(base.get(skill_column(name)) or 0) + stat_modifier(scores[ability]) + skill_bonuses.get(name, 0)
        for name, ability in SKILL_ABILITIES.items()
    }

    return EffectiveStats(
        scores=scores,
        max_hp=int(base.get("max_hp") or 0) + modifiers["hp"],
        ac=ac,
        speed=speed,
        initiative=int(base.get("initiative_modifier") or 0) + modifiers["init"],
        implant_capacity=int(base.get("implant_capacity") or DEFAULT_IMPLANT_CAPACITY) + modifiers["ic"],
        skills=skills,
        skill_bonuses=skill_bonuses,
        modifiers=modifiers,
        armor_penalty=armor_penalty,
        equipped_armor=len(armor),
        equipped_weapons=len(weapons),
        ic_used=ic_used,
        weapon_to_hit={kind: weapon_to_hit(int(base.get(f"weapon_rank_{kind}") or 0)) for kind in WEAPON_TYPES},
    )


def check_can_equip(stats: EffectiveStats, item: dict[str, Any]) -> None:
    """Raise when equipping item would exceed an equipment slot limit."""
    item_type = item.get("type")
    if item_type == "armor" and stats.equipped_armor >= MAX_EQUIPPED_ARMOR:
        raise DomainValidationError("Only 1 armor can be equipped at a time")
    if item_type == "weapon" and stats.equipped_weapons >= MAX_EQUIPPED_WEAPONS:
        raise DomainValidationError(f"Only {MAX_EQUIPPED_WEAPONS} weapons can be equipped at a time")
    if item_type == "cyberware":
        ic_cost = int(item.get("ic_cost") or 0)
        if ic_cost > stats.ic_remaining:
            raise DomainValidationError(
                f"Not enough implant capacity: requires {ic_cost}, {stats.ic_remaining} remaining"
            )
