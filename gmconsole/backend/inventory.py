"""Inventory operations: equip toggling and giving items with their linked abilities."""

from __future__ import annotations

import logging
from typing import Any

from gmconsole.backend.charges import initial_charges
from gmconsole.backend.errors import DomainValidationError, RecordNotFoundError
from gmconsole.backend.models import ABILITIES, ABILITY_GRANTS, CHARACTERS, INVENTORY, ITEM_ABILITIES, ITEMS
from gmconsole.backend.state import utc_now_iso
from gmconsole.backend.stats import EffectiveStats, check_can_equip, compute_stats
from gmconsole.backend.store import Repository

logger = logging.getLogger(__name__)


def load_inventory(repository: Repository, character_id: str) -> list[dict[str, Any]]:
    """Inventory rows of a character with the item joined under ``item``."""
    rows = []
    for row in repository.list(INVENTORY, {"character_id": character_id}):
        item = repository.get(ITEMS, row["item_id"])
        if item is None:
            logger.warning("Inventory row %s references missing item %s", row["id"], row["item_id"])
            continue
        rows.append(dict(row, item=item))
    return rows


def character_stats(repository: Repository, character_id: str) -> EffectiveStats:
    character = repository.get(CHARACTERS, character_id)
    if character is None:
        raise RecordNotFoundError(CHARACTERS, character_id)
    return compute_stats(character, load_inventory(repository, character_id))


def toggle_equip(repository: Repository, inventory_id: str) -> dict[str, Any]:
    row = repository.get(INVENTORY, inventory_id)
    if row is None:
        raise RecordNotFoundError(INVENTORY, inventory_id)
    item = repository.get(ITEMS, row["item_id"])
    if item is None:
        raise RecordNotFoundError(ITEMS, row["item_id"])

    equip = not bool(row.get("is_equipped"))
    if equip:
        if item.get("is_equippable") is False:
            raise DomainValidationError(f"{item.get('name', 'This item')} cannot be equipped")
        check_can_equip(character_stats(repository, row["character_id"]), item)
    return repository.update(INVENTORY, inventory_id, {"is_equipped": equip})


def give_item(repository: Repository, character_id: str, item_id: str, quantity: int = 1) -> dict[str, Any]:
    """Add quantity of an item to a character, then grant the item's abilities.

    The stack write and each grant are separate writes. Grants that already
    exist for this item are skipped, so retrying after a failure is safe.
    """
    if quantity < 1:
        raise DomainValidationError("Quantity must be at least 1")
    if repository.get(CHARACTERS, character_id) is None:
        raise RecordNotFoundError(CHARACTERS, character_id)
    if repository.get(ITEMS, item_id) is None:
        raise RecordNotFoundError(ITEMS, item_id)

    existing = repository.list(INVENTORY, {"character_id": character_id, "item_id": item_id})
    if existing:
        stack = existing[0]
        row = repository.update(INVENTORY, stack["id"], {"quantity": int(stack.get("quantity") or 0) + quantity})
    else:
        row = repository.insert(
            INVENTORY,
            {
                "character_id": character_id,
                "item_id": item_id,
                "quantity": quantity,
                "is_equipped": False,
                "acquired_at": utc_now_iso(),
            },
        )

    granted = []
    for link in repository.list(ITEM_ABILITIES, {"item_id": item_id}):
        ability = repository.get(ABILITIES, link["ability_id"])
        if ability is None:
            logger.warning("Item %s links missing ability %s", item_id, link["ability_id"])
            continue
        already_granted = repository.list(
            ABILITY_GRANTS,
            {
                "character_id": character_id,
                "ability_id": ability["id"],
                "source_type": "item",
                "source_id": item_id,
            },
        )
        if already_granted:
            continue
        granted.append(
            repository.insert(
                ABILITY_GRANTS,
                {
                    "character_id": character_id,
                    "ability_id": ability["id"],
                    "current_charges": initial_charges(ability),
                    "source_type": "item",
                    "source_id": item_id,
                    "granted_at": utc_now_iso(),
                },
            )
        )

    return {"inventory": row, "granted": granted}
