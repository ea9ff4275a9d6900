"""Record builders for new encounters."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from gmconsole.backend.errors import DomainValidationError


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_encounter(encounter_id: str, name: str, description: str | None = None) -> dict[str, Any]:
    """Return a fresh draft encounter row."""
    if not name or not name.strip():
        raise DomainValidationError("Encounter name is required")
    now = utc_now_iso()
    return {
        "id": encounter_id,
        "name": name.strip(),
        "description": description or None,
        "status": "draft",
        "round_number": 1,
        "current_turn": 0,
        "current_participant_id": None,
        "created_at": now,
        "started_at": None,
        "completed_at": None,
    }
