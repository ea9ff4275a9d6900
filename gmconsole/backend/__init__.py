"""Backend package for the GM console."""

from .config import BackendSettings, load_settings
from .engine import apply_gm_action
from .security import GMAccess, generate_token, hash_token, verify_token
from .service import EncounterService
from .state import build_encounter
from .store import InMemoryRepository, PostgresRepository, Repository, create_repository

__all__ = [
    "apply_gm_action",
    "BackendSettings",
    "build_encounter",
    "create_repository",
    "EncounterService",
    "generate_token",
    "GMAccess",
    "hash_token",
    "InMemoryRepository",
    "load_settings",
    "PostgresRepository",
    "Repository",
    "verify_token",
]
