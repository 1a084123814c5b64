import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import TypeAdapter, ValidationError

from connvault.core import master_key
from connvault.core.context import resolve_security_context
from connvault.core.merge import apply_merge_policy
from connvault.core.secret_codec import (
    deserialize_secrets,
    has_locked_secrets,
    scrub_secrets,
    serialize_secrets,
)
from connvault.core.session import MasterKeySession, default_session
from connvault.core.settings import SAVE_PASSWORD, SECURITY_KEYS, open_settings, read_master_key_material
from connvault.core.store import DocumentStore, StorageError
from connvault.models import (
    AuthProfile,
    ConnectionRecord,
    ExportBundle,
    MasterKeyMaterial,
    SecurityContext,
    SshConnection,
    VaultRecord,
    VaultStatus,
)

logger = logging.getLogger(__name__)

CONNECTIONS_KEY = "connections"
PROFILES_KEY = "profiles"

_connections_adapter = TypeAdapter(List[ConnectionRecord])
_profiles_adapter = TypeAdapter(List[AuthProfile])


def _dump(records: Sequence[VaultRecord]) -> List[Dict[str, Any]]:
    return [r.model_dump(mode="json", by_alias=True) for r in records]


class VaultStorage:
    """
    Connections, auth profiles and security settings of one workspace.

    Records handed out by `load_*` carry plaintext secrets (or "" where the vault could
    not resolve them). Records handed to `save_*` go through the merge policy and the
    secret codec before they reach disk.
    """

    def __init__(self, workspace_dir: str | None = None, session: Optional[MasterKeySession] = None):
        workspace_dir = workspace_dir or os.getenv("CONNVAULT_WORKSPACE", "./workspace")
        self.base_dir = Path(workspace_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.session = session or default_session()
        self.settings = open_settings(self.base_dir)
        self.connections_store = DocumentStore(self.base_dir / "connections.json")
        self.keys_store = DocumentStore(self.base_dir / "keys.json")

    # --- Security ---
    def security_context(self) -> SecurityContext:
        return resolve_security_context(self.settings, self.session)

    def master_key_material(self) -> MasterKeyMaterial:
        return read_master_key_material(self.settings)

    def status(self) -> VaultStatus:
        return master_key.vault_status(self.settings, self.session)

    def set_master_key(self, passphrase: str, confirmation: str | None = None, lock_timeout_minutes: int | None = None):
        return master_key.set_master_key(self.settings, self.session, passphrase, confirmation, lock_timeout_minutes)

    def unlock(self, passphrase: str) -> bool:
        return master_key.unlock(self.settings, self.session, passphrase)

    def lock(self):
        master_key.lock(self.session)

    def remove_master_key(self, passphrase: str):
        master_key.remove_master_key(self.settings, self.session, passphrase)

    def set_lock_timeout(self, minutes: int):
        master_key.set_lock_timeout(self.settings, minutes)

    def set_persist_secrets(self, enabled: bool):
        self.settings.set(SAVE_PASSWORD, bool(enabled))

    def enforce_idle_lock(self) -> bool:
        return self.session.lock_if_idle(self.master_key_material().lock_timeout_minutes)

    # --- Raw (on-disk form) ---
    def _read_connections_raw(self) -> List[ConnectionRecord]:
        raw = self.connections_store.get(CONNECTIONS_KEY, [])
        if not isinstance(raw, list):
            raise StorageError("connections store is not a list")
        items = []
        for item in raw:
            if not item:
                continue
            if isinstance(item, dict) and "kind" not in item:
                # Records written before RDP support carry no discriminator.
                item = {**item, "kind": "ssh"}
            items.append(item)
        try:
            return _connections_adapter.validate_python(items)
        except ValidationError as exc:
            raise StorageError(f"connections store is malformed: {exc}") from exc

    def _read_profiles_raw(self) -> List[AuthProfile]:
        raw = self.keys_store.get(PROFILES_KEY, [])
        if not isinstance(raw, list):
            raise StorageError("keys store is not a list")
        try:
            return _profiles_adapter.validate_python([p for p in raw if p])
        except ValidationError as exc:
            raise StorageError(f"keys store is malformed: {exc}") from exc

    def _prepare_for_disk(self, records: Sequence[VaultRecord], on_disk: Sequence[VaultRecord]) -> List[Dict[str, Any]]:
        ctx = self.security_context()
        merged = apply_merge_policy(records, on_disk, ctx)
        # Everything is encrypted before anything is written; a failure aborts the save.
        serialized = [serialize_secrets(r, ctx, keep_plaintext=ctx.merge_on_save) for r in merged]
        return _dump(serialized)

    # --- Connections ---
    def load_connections(self) -> List[ConnectionRecord]:
        ctx = self.security_context()
        return [deserialize_secrets(c, ctx) for c in self._read_connections_raw()]

    def save_connections(self, connections: Sequence[ConnectionRecord]):
        payload = self._prepare_for_disk(connections, self._read_connections_raw())
        self.connections_store.set(CONNECTIONS_KEY, payload)

    def load_resolved_connections(self) -> List[ConnectionRecord]:
        """Connections with linked auth profiles applied, as used to open a session."""
        profiles = {p.id: p for p in self.load_profiles()}
        return [self._apply_profile(c, profiles) for c in self.load_connections()]

    def _apply_profile(self, conn: ConnectionRecord, profiles: Dict[str, AuthProfile]) -> ConnectionRecord:
        if not isinstance(conn, SshConnection) or not conn.auth_profile_id:
            return conn
        profile = profiles.get(conn.auth_profile_id)
        if profile is None:
            # Dangling reference: keep the connection's own credentials.
            return conn
        return conn.model_copy(
            update={"username": profile.username, "auth_type": profile.auth_type.model_copy(deep=True)}
        )

    def locked_connection_ids(self) -> List[str]:
        ctx = self.security_context()
        if ctx.master_key:
            return []
        locked_profiles = {p.id for p in self._read_profiles_raw() if has_locked_secrets(p, ctx)}
        locked = []
        for conn in self._read_connections_raw():
            uses_locked_profile = isinstance(conn, SshConnection) and conn.auth_profile_id in locked_profiles
            if has_locked_secrets(conn, ctx) or uses_locked_profile:
                locked.append(conn.id)
        return locked

    # --- Auth profiles ---
    def load_profiles(self) -> List[AuthProfile]:
        ctx = self.security_context()
        return [deserialize_secrets(p, ctx) for p in self._read_profiles_raw()]

    def save_profiles(self, profiles: Sequence[AuthProfile]):
        payload = self._prepare_for_disk(profiles, self._read_profiles_raw())
        self.keys_store.set(PROFILES_KEY, payload)

    def delete_profile(self, profile_id: str) -> int:
        """
        Remove a profile and detach every connection that referenced it.
        Works on the on-disk form only, so stored ciphertext is untouched even while locked.
        Returns the number of detached connections.
        """
        profiles = [p for p in self._read_profiles_raw() if p.id != profile_id]
        self.keys_store.set(PROFILES_KEY, _dump(profiles))

        connections = self._read_connections_raw()
        detached = 0
        for conn in connections:
            if isinstance(conn, SshConnection) and conn.auth_profile_id == profile_id:
                conn.auth_profile_id = None
                detached += 1
        if detached:
            self.connections_store.set(CONNECTIONS_KEY, _dump(connections))
            logger.info("detached %d connection(s) from deleted profile %s", detached, profile_id)
        return detached

    # --- Export ---
    def export_bundle(self) -> ExportBundle:
        settings = self.settings.snapshot()
        for key in SECURITY_KEYS:
            settings[key] = ""
        return ExportBundle(
            connections=[scrub_secrets(c) for c in self._read_connections_raw()],
            profiles=[scrub_secrets(p) for p in self._read_profiles_raw()],
            settings=settings,
        )


_storage: Optional[VaultStorage] = None


def get_storage() -> VaultStorage:
    global _storage
    if _storage is None:
        _storage = VaultStorage()
    return _storage

