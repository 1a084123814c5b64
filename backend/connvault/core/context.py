import logging

from connvault.core.crypto import generate_salt
from connvault.core.session import MasterKeySession
from connvault.core.settings import (
    MASTER_KEY_ENC_SALT,
    persist_secrets_enabled,
    read_master_key_material,
)
from connvault.core.store import DocumentStore
from connvault.models import SecurityContext

logger = logging.getLogger(__name__)


def resolve_security_context(settings: DocumentStore, session: MasterKeySession) -> SecurityContext:
    """
    Compose the settings and the session cache into the context of one operation.

    The first time an unlocked vault is asked to persist secrets and no encryption salt
    exists yet, one is generated and stored. That salt is never regenerated afterwards.
    """
    material = read_master_key_material(settings)
    persist = persist_secrets_enabled(settings)
    passphrase = session.get()
    enc_salt = material.encryption_salt

    if persist and material.hash and passphrase and not enc_salt:
        enc_salt = generate_salt()
        settings.set(MASTER_KEY_ENC_SALT, enc_salt)
        logger.info("generated encryption salt on first use")

    return SecurityContext(
        master_key=passphrase if passphrase and enc_salt else None,
        encryption_salt=enc_salt,
        persist_secrets=persist,
        has_master_key=bool(material.hash),
    )
