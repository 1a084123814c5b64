import logging
from typing import Optional

from connvault.core.crypto import derive_verification_hash, generate_salt, verify_master_key
from connvault.core.session import MasterKeySession
from connvault.core.settings import (
    LOCK_TIMEOUT_MINUTES,
    MASTER_KEY_ENC_SALT,
    MASTER_KEY_HASH,
    MASTER_KEY_SALT,
    persist_secrets_enabled,
    read_master_key_material,
)
from connvault.core.store import DocumentStore
from connvault.models import MasterKeyMaterial, VaultStatus

logger = logging.getLogger(__name__)

MIN_PASSPHRASE_LEN = 6


class PassphraseValidationError(ValueError):
    """Malformed passphrase input the user has to correct."""


class InvalidPassphraseError(Exception):
    """The passphrase does not match the stored master-key hash."""


def validate_new_passphrase(passphrase: str, confirmation: Optional[str]):
    if not passphrase or len(passphrase) < MIN_PASSPHRASE_LEN:
        raise PassphraseValidationError(f"passphrase must be at least {MIN_PASSPHRASE_LEN} characters")
    if confirmation is not None and confirmation != passphrase:
        raise PassphraseValidationError("passphrase confirmation does not match")


def set_master_key(
    settings: DocumentStore,
    session: MasterKeySession,
    passphrase: str,
    confirmation: Optional[str] = None,
    lock_timeout_minutes: Optional[int] = None,
) -> MasterKeyMaterial:
    """
    Configure a new master passphrase and unlock the session with it.

    An encryption salt left over from an earlier key is reused rather than replaced:
    ciphertext written under it would otherwise become undecryptable for good.
    """
    material = read_master_key_material(settings)
    if material.configured:
        raise PassphraseValidationError("a master key is already configured")
    validate_new_passphrase(passphrase, confirmation)
    timeout = material.lock_timeout_minutes if lock_timeout_minutes is None else lock_timeout_minutes
    if timeout < 0:
        raise PassphraseValidationError("lock timeout must not be negative")

    verification_salt = generate_salt()
    material = MasterKeyMaterial(
        hash=derive_verification_hash(passphrase, verification_salt),
        verification_salt=verification_salt,
        encryption_salt=material.encryption_salt or generate_salt(),
        lock_timeout_minutes=timeout,
    )
    settings.update(
        {
            MASTER_KEY_HASH: material.hash,
            MASTER_KEY_SALT: material.verification_salt,
            MASTER_KEY_ENC_SALT: material.encryption_salt,
            LOCK_TIMEOUT_MINUTES: material.lock_timeout_minutes,
        }
    )
    session.set(passphrase)
    logger.info("master key configured")
    return material


def unlock(settings: DocumentStore, session: MasterKeySession, passphrase: str) -> bool:
    material = read_master_key_material(settings)
    if not verify_master_key(passphrase, material.verification_salt, material.hash):
        logger.warning("unlock rejected")
        return False
    session.set(passphrase)
    logger.info("vault unlocked")
    return True


def lock(session: MasterKeySession):
    session.clear()
    logger.info("vault locked")


def remove_master_key(settings: DocumentStore, session: MasterKeySession, passphrase: str):
    """
    Drop the master key. Secrets encrypted under it stay on disk but resolve to ""
    from now on; the encryption salt is kept so the invariant on it still holds.
    """
    material = read_master_key_material(settings)
    if not verify_master_key(passphrase, material.verification_salt, material.hash):
        raise InvalidPassphraseError("master passphrase does not verify")
    settings.update({MASTER_KEY_HASH: "", MASTER_KEY_SALT: ""})
    session.clear()
    logger.info("master key removed")


def set_lock_timeout(settings: DocumentStore, minutes: int):
    if minutes < 0:
        raise PassphraseValidationError("lock timeout must not be negative")
    settings.set(LOCK_TIMEOUT_MINUTES, minutes)


def vault_status(settings: DocumentStore, session: MasterKeySession) -> VaultStatus:
    material = read_master_key_material(settings)
    return VaultStatus(
        has_master_key=material.configured,
        locked=material.configured and not session.is_unlocked(),
        persist_secrets=persist_secrets_enabled(settings),
        lock_timeout_minutes=material.lock_timeout_minutes,
    )
