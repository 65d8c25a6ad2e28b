from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import structlog
from cryptography.fernet import Fernet, InvalidToken

from .errors import ConfigurationError

log = structlog.get_logger()


def _fernet(key_str: str) -> Fernet:
    return Fernet(key_str.encode("utf-8"))


class EncryptedCredentialStore:
    """
    Upstream credentials kept encrypted at rest.

    One Fernet-encrypted JSON object lives at `path`, e.g. {"groq_api_key": "..."}.
    """

    def __init__(self, path: str, fernet_key: str):
        self.path = Path(path)
        self.fernet_key = fernet_key

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, payload: dict[str, Any]) -> None:
        raw = json.dumps(payload).encode("utf-8")
        self.path.write_bytes(_fernet(self.fernet_key).encrypt(raw))

    def load(self) -> dict[str, Any]:
        try:
            raw = _fernet(self.fernet_key).decrypt(self.path.read_bytes())
        except InvalidToken as e:
            raise ConfigurationError("Failed to decrypt credentials (wrong key or corrupted file).") from e
        payload = json.loads(raw.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ConfigurationError("Credential payload must be a JSON object.")
        return payload


def resolve_api_key(cfg: Any) -> str | None:
    """Environment key first, then the encrypted store when a Fernet key is configured."""
    if cfg.groq_api_key:
        return cfg.groq_api_key
    if not cfg.fernet_key:
        return None
    store = EncryptedCredentialStore(cfg.credentials_path, cfg.fernet_key)
    if not store.exists():
        return None
    key = store.load().get("groq_api_key")
    if key:
        log.info("api_key_loaded_from_store", path=str(store.path))
    return key or None
