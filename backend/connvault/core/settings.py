from pathlib import Path
from typing import Any, Dict

from connvault.core.store import DocumentStore
from connvault.models import MasterKeyMaterial

MASTER_KEY_HASH = "security.masterKeyHash"
MASTER_KEY_SALT = "security.masterKeySalt"
MASTER_KEY_ENC_SALT = "security.masterKeyEncSalt"
LOCK_TIMEOUT_MINUTES = "security.lockTimeoutMinutes"
SAVE_PASSWORD = "connection.savePassword"

SECURITY_KEYS = (MASTER_KEY_HASH, MASTER_KEY_SALT, MASTER_KEY_ENC_SALT)

DEFAULT_SETTINGS: Dict[str, Any] = {
    SAVE_PASSWORD: True,
    MASTER_KEY_HASH: "",
    MASTER_KEY_SALT: "",
    MASTER_KEY_ENC_SALT: "",
    LOCK_TIMEOUT_MINUTES: 0,
}


def open_settings(base_dir: Path) -> DocumentStore:
    return DocumentStore(Path(base_dir) / "settings.json", defaults=DEFAULT_SETTINGS)


def read_master_key_material(settings: DocumentStore) -> MasterKeyMaterial:
    timeout = settings.get(LOCK_TIMEOUT_MINUTES)
    return MasterKeyMaterial(
        hash=settings.get(MASTER_KEY_HASH) or "",
        verification_salt=settings.get(MASTER_KEY_SALT) or "",
        encryption_salt=settings.get(MASTER_KEY_ENC_SALT) or "",
        lock_timeout_minutes=timeout if isinstance(timeout, int) else 0,
    )


def persist_secrets_enabled(settings: DocumentStore) -> bool:
    return bool(settings.get(SAVE_PASSWORD))
