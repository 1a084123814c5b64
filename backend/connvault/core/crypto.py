import base64
import binascii
import hmac
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from connvault.models import EncryptedPayload

# --- Parameters ---
VERIFY_ITERS = 100_000
ENCRYPT_ITERS = 120_000
KEY_LEN = 32
SALT_LEN = 16
IV_LEN = 12


class CryptoError(Exception):
    pass


class CryptoUnavailableError(CryptoError):
    """The installed backend cannot provide PBKDF2-SHA256 or AES-GCM."""


class DecryptionError(CryptoError):
    pass


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("utf-8")


def _unb64(value: str) -> bytes:
    return base64.b64decode(value.encode("utf-8"), validate=True)


def _pbkdf2(passphrase: str, salt_b64: str, iterations: int) -> bytes:
    try:
        salt = _unb64(salt_b64)
    except (binascii.Error, ValueError) as exc:
        raise CryptoError("invalid salt encoding") from exc
    try:
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_LEN, salt=salt, iterations=iterations)
    except UnsupportedAlgorithm as exc:
        raise CryptoUnavailableError("PBKDF2-HMAC-SHA256 unavailable") from exc
    return kdf.derive(passphrase.encode("utf-8"))


def generate_salt(length: int = SALT_LEN) -> str:
    return _b64(secrets.token_bytes(length))


def derive_verification_hash(passphrase: str, verification_salt: str) -> str:
    """
    Password hash used only to confirm a re-entered master passphrase.
    Never usable as a cipher key: iteration count differs from the encryption derivation.
    """
    return _b64(_pbkdf2(passphrase, verification_salt, VERIFY_ITERS))


def derive_encryption_key(passphrase: str, encryption_salt: str) -> AESGCM:
    """
    Returns an AES-256-GCM handle. The raw key bytes never leave this function.
    """
    raw = _pbkdf2(passphrase, encryption_salt, ENCRYPT_ITERS)
    try:
        return AESGCM(raw)
    except UnsupportedAlgorithm as exc:
        raise CryptoUnavailableError("AES-GCM unavailable") from exc


def verify_master_key(passphrase: str, verification_salt: Optional[str], stored_hash: Optional[str]) -> bool:
    if not stored_hash or not verification_salt:
        return False
    try:
        candidate = derive_verification_hash(passphrase, verification_salt)
    except CryptoUnavailableError:
        raise
    except CryptoError:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), stored_hash.encode("utf-8"))


def encrypt_string(plaintext: str, passphrase: str, encryption_salt: str) -> EncryptedPayload:
    aes = derive_encryption_key(passphrase, encryption_salt)
    iv = secrets.token_bytes(IV_LEN)
    ct = aes.encrypt(iv, plaintext.encode("utf-8"), None)  # includes tag
    return EncryptedPayload(iv=_b64(iv), data=_b64(ct))


def decrypt_string(payload: EncryptedPayload, passphrase: str, encryption_salt: str) -> str:
    try:
        aes = derive_encryption_key(passphrase, encryption_salt)
    except CryptoUnavailableError:
        raise
    except CryptoError as exc:
        raise DecryptionError("invalid encryption salt") from exc
    try:
        iv = _unb64(payload.iv)
        ct = _unb64(payload.data)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("invalid payload encoding") from exc
    if len(iv) != IV_LEN:
        raise DecryptionError("invalid iv length")
    try:
        pt = aes.decrypt(iv, ct, None)
    except InvalidTag as exc:
        raise DecryptionError("decryption failed") from exc
    try:
        return pt.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionError("plaintext is not utf-8") from exc
