"""Game-master token gate for mutating API routes."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import hmac
import secrets

from gmconsole.backend.config import BackendSettings

TOKEN_BYTES = 24


def generate_token() -> str:
    """Generate a URL-safe token a GM can put into GMCONSOLE_GM_TOKEN."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(token: str, server_salt: str) -> str:
    payload = f"{token}{server_salt}".encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def verify_token(raw_token: str, expected_hash: str, server_salt: str) -> bool:
    return hmac.compare_digest(hash_token(raw_token, server_salt), expected_hash)


@dataclass(frozen=True)
class GMAccess:
    """Only the salted hash of the configured GM token is kept in memory."""

    token_hash: str | None
    server_salt: str

    @classmethod
    def from_settings(cls, settings: BackendSettings) -> "GMAccess":
        token_hash = hash_token(settings.gm_token, settings.server_salt) if settings.gm_token else None
        return cls(token_hash=token_hash, server_salt=settings.server_salt)

    @property
    def enabled(self) -> bool:
        return self.token_hash is not None

    def allows(self, raw_token: str | None) -> bool:
        if self.token_hash is None:
            return True
        if not raw_token:
            return False
        return verify_token(raw_token, self.token_hash, self.server_salt)
