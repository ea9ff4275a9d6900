"""Party-wide ability charge economy: rests and ability use."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from gmconsole.backend.errors import DomainValidationError, PartialWriteError, RecordNotFoundError, RepositoryError
from gmconsole.backend.models import ABILITIES, ABILITY_GRANTS, RestReport
from gmconsole.backend.store import Repository

logger = logging.getLogger(__name__)

REST_TYPES = ("short_rest", "long_rest")

# Charge types replenished by each rest, with the per-rest multiplier.
REST_MULTIPLIERS = {
    "short_rest": {"short_rest": 1},
    "long_rest": {"short_rest": 2, "long_rest": 1},
}


def charges_per_rest(ability: dict[str, Any]) -> int:
    per_rest = ability.get("charges_per_rest")
    if per_rest is None:
        per_rest = ability.get("max_charges")
    return int(per_rest or 0)


def restored_charges(current: int, ability: dict[str, Any], rest_type: str) -> int:
    """Return the charge count after a rest; unaffected charge types keep current."""
    multiplier = REST_MULTIPLIERS[rest_type].get(str(ability.get("charge_type")))
    if multiplier is None:
        return current
    max_charges = int(ability.get("max_charges") or 0)
    return max(0, min(max_charges, current + charges_per_rest(ability) * multiplier))


def plan_rest(
    grants: Iterable[dict[str, Any]],
    abilities: dict[str, dict[str, Any]],
    rest_type: str,
) -> dict[str, int]:
    """Map grant id to its new charge count, for grants the rest actually changes."""
    if rest_type not in REST_TYPES:
        raise DomainValidationError(f"Unknown rest type {rest_type!r}")
    updates: dict[str, int] = {}
    for grant in grants:
        ability = abilities.get(grant.get("ability_id"))
        if ability is None:
            logger.warning("Grant %s references missing ability %s", grant.get("id"), grant.get("ability_id"))
            continue
        current = int(grant.get("current_charges") or 0)
        new_charges = restored_charges(current, ability, rest_type)
        if new_charges != current:
            updates[grant["id"]] = new_charges
    return updates


def take_rest(repository: Repository, rest_type: str) -> RestReport:
    """Apply a rest to every ability grant of every character.

    Each changed grant is written on its own. When a write fails the grants
    already written stay updated and PartialWriteError reports how far it got.
    """
    abilities = {ability["id"]: ability for ability in repository.list(ABILITIES)}
    grants = repository.list(ABILITY_GRANTS)
    updates = plan_rest(grants, abilities, rest_type)

    applied = 0
    for grant_id, new_charges in updates.items():
        try:
            repository.update(ABILITY_GRANTS, grant_id, {"current_charges": new_charges})
        except RepositoryError as exc:
            raise PartialWriteError(f"{rest_type} stopped at grant {grant_id}", applied, len(updates)) from exc
        applied += 1

    logger.info("%s restored charges on %d of %d grants", rest_type, applied, len(grants))
    return RestReport(rest_type=rest_type, changed=applied, examined=len(grants), updates=updates)


def use_ability(repository: Repository, grant_id: str) -> dict[str, Any]:
    """Spend one charge of a held ability. Infinite abilities cost nothing."""
    grant = repository.get(ABILITY_GRANTS, grant_id)
    if grant is None:
        raise RecordNotFoundError(ABILITY_GRANTS, grant_id)
    ability = repository.get(ABILITIES, grant["ability_id"])
    if ability is None:
        raise RecordNotFoundError(ABILITIES, grant["ability_id"])

    if ability.get("charge_type") == "infinite":
        return grant

    current = int(grant.get("current_charges") or 0)
    if current <= 0:
        raise DomainValidationError(f"No charges remaining for {ability.get('name', grant['ability_id'])}")
    return repository.update(ABILITY_GRANTS, grant_id, {"current_charges": current - 1})


def initial_charges(ability: dict[str, Any]) -> int:
    if ability.get("charge_type") == "infinite":
        return 0
    return int(ability.get("max_charges") or 0)
