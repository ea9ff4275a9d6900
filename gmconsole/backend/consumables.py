"""Consumable item resolution: permanent stat changes, HP effects, inventory decrement."""

from __future__ import annotations

import logging
from typing import Any

from gmconsole.backend.errors import DomainValidationError, RecordNotFoundError
from gmconsole.backend.hp import clamp_hp, propagate_entity_hp
from gmconsole.backend.models import CHARACTERS, INVENTORY, ITEMS, ConsumableReport
from gmconsole.backend.stats import (
    ABILITY_SCORES,
    DEFAULT_IMPLANT_CAPACITY,
    DEFAULT_SPEED,
    format_modifier,
    skill_column,
)
from gmconsole.backend.store import Repository

logger = logging.getLogger(__name__)

# character column -> (item column, default base value, summary label)
PERMANENT_FIELDS = {
    **{stat: (f"{stat}_mod", 0, stat.upper()) for stat in ABILITY_SCORES},
    "ac": ("ac_mod", 0, "AC"),
    "speed": ("speed_mod", DEFAULT_SPEED, "Speed"),
    "initiative_modifier": ("init_mod", 0, "Init"),
    "implant_capacity": ("ic_mod", DEFAULT_IMPLANT_CAPACITY, "IC"),
}


def consumable_patch(character: dict[str, Any], item: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Return the character patch for consuming item and a summary of applied effects."""
    patch: dict[str, Any] = {}
    effects: list[str] = []
    for column, (mod_column, default, label) in PERMANENT_FIELDS.items():
        modifier = int(item.get(mod_column) or 0)
        patch[column] = int(character.get(column) or default) + modifier
        if modifier:
            effects.append(f"{label} {format_modifier(modifier)}")

    hp_mod = int(item.get("hp_mod") or 0)
    if hp_mod:
        current_hp = int(character.get("current_hp") or 0)
        max_hp = int(character.get("max_hp") or 0)
        if item.get("hp_mod_type") == "max_hp":
            patch["max_hp"] = max_hp + hp_mod
            effects.append(f"Max HP {format_modifier(hp_mod)}")
        else:
            patch["current_hp"] = clamp_hp(current_hp + hp_mod, max_hp)
            effects.append(f"HP healed {format_modifier(hp_mod)}")

    for skill_name, modifier in (item.get("skill_mods") or {}).items():
        if not modifier:
            continue
        column = skill_column(skill_name)
        patch[column] = int(character.get(column) or 0) + int(modifier)
        effects.append(f"{skill_name} {format_modifier(int(modifier))}")

    return patch, effects


def use_consumable(repository: Repository, character_id: str, inventory_id: str) -> ConsumableReport:
    inventory_row = repository.get(INVENTORY, inventory_id)
    if inventory_row is None or inventory_row.get("character_id") != character_id:
        raise RecordNotFoundError(INVENTORY, inventory_id)
    item = repository.get(ITEMS, inventory_row["item_id"])
    if item is None:
        raise RecordNotFoundError(ITEMS, inventory_row["item_id"])
    if not item.get("is_consumable"):
        raise DomainValidationError(f"{item.get('name', 'This item')} cannot be consumed")
    quantity = int(inventory_row.get("quantity") or 0)
    if quantity < 1:
        raise DomainValidationError("No uses left in this inventory stack")

    character = repository.get(CHARACTERS, character_id)
    if character is None:
        raise RecordNotFoundError(CHARACTERS, character_id)

    patch, effects = consumable_patch(character, item)
    hp_changed = "current_hp" in patch and patch["current_hp"] != int(character.get("current_hp") or 0)
    updated = repository.update(CHARACTERS, character_id, patch)

    remaining = quantity - 1
    if remaining > 0:
        repository.update(INVENTORY, inventory_id, {"quantity": remaining})
    else:
        repository.delete(INVENTORY, inventory_id)

    participant_ids: list[str] = []
    if hp_changed:
        participant_ids = propagate_entity_hp(repository, "player", character_id, int(updated["current_hp"]))

    logger.info("%s consumed %s: %s", character.get("name", character_id), item.get("name"), ", ".join(effects) or "no effect")
    return ConsumableReport(
        character=updated,
        hp_changed=hp_changed,
        remaining_quantity=remaining,
        effects=effects,
        participant_ids=participant_ids,
    )
