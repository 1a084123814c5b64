import logging
from typing import TypeVar, Union

from connvault.core.crypto import DecryptionError, decrypt_string, encrypt_string
from connvault.models import EncryptedPayload, SecretFields, SecurityContext

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=SecretFields)


def is_ciphertext(value: object) -> bool:
    return isinstance(value, EncryptedPayload)


def decrypt_maybe(value: Union[EncryptedPayload, str, None], ctx: SecurityContext) -> str:
    """Resolve one stored secret to plaintext; anything unresolvable becomes ""."""
    if not value:
        return ""
    if isinstance(value, EncryptedPayload):
        if not ctx.master_key:
            return ""
        try:
            return decrypt_string(value, ctx.master_key, ctx.encryption_salt)
        except DecryptionError as ex:
            logger.debug("secret field left unresolved: %s", ex)
            return ""
    if isinstance(value, str):
        return value
    return ""


def encrypt_maybe(
    value: Union[EncryptedPayload, str, None],
    ctx: SecurityContext,
    keep_plaintext: bool = False,
) -> Union[EncryptedPayload, str]:
    """
    Produce the on-disk form of one secret.

    Blank is always an explicit clear. Ciphertext already in place (carried over by the
    merge policy) is written verbatim. Plaintext is only kept when `keep_plaintext` is
    set, which the locked-save path does for values typed while locked.
    """
    if isinstance(value, EncryptedPayload):
        return value
    if not value or not value.strip():
        return ""
    if ctx.can_encrypt:
        return encrypt_string(value, ctx.master_key, ctx.encryption_salt)
    if keep_plaintext:
        return value
    return ""


def deserialize_secrets(record: R, ctx: SecurityContext) -> R:
    r = record.model_copy(deep=True)
    for path in r.secret_paths():
        r.set_secret(path, decrypt_maybe(r.get_secret(path), ctx))
    return r


def serialize_secrets(record: R, ctx: SecurityContext, keep_plaintext: bool = False) -> R:
    # Encryption errors propagate so the caller aborts the whole save.
    r = record.model_copy(deep=True)
    for path in r.secret_paths():
        r.set_secret(path, encrypt_maybe(r.get_secret(path), ctx, keep_plaintext))
    return r


def scrub_secrets(record: R) -> R:
    r = record.model_copy(deep=True)
    for path in r.secret_paths():
        r.set_secret(path, "")
    return r


def record_contains_encrypted_values(record: SecretFields) -> bool:
    return any(is_ciphertext(record.get_secret(path)) for path in record.secret_paths())


def has_locked_secrets(record: SecretFields, ctx: SecurityContext) -> bool:
    """True when the record holds ciphertext this context has no key for."""
    if ctx.master_key:
        return False
    return record_contains_encrypted_values(record)
