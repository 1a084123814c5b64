import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from connvault.models import (
    AuthProfile,
    EncryptedPayload,
    PasswordAuth,
    PrivateKeyAuth,
    RdpConnection,
    SecurityContext,
    SshConnection,
)
from connvault.core.crypto import CryptoError, decrypt_string, encrypt_string, generate_salt
from connvault.core.secret_codec import (
    deserialize_secrets,
    has_locked_secrets,
    record_contains_encrypted_values,
    scrub_secrets,
    serialize_secrets,
)

PASSPHRASE = "correct-horse-1"
SALT = generate_salt()


def unlocked():
    return SecurityContext(master_key=PASSPHRASE, encryption_salt=SALT, persist_secrets=True, has_master_key=True)


def locked():
    return SecurityContext(master_key=None, encryption_salt=SALT, persist_secrets=True, has_master_key=True)


def test_secret_paths_per_variant():
    assert SshConnection(auth_type=PasswordAuth()).secret_paths() == ["auth_type.password"]
    assert SshConnection(auth_type=PrivateKeyAuth()).secret_paths() == [
        "auth_type.key_content",
        "auth_type.passphrase",
    ]
    assert RdpConnection().secret_paths() == ["password", "gateway_password"]
    assert AuthProfile(auth_type=PasswordAuth()).secret_paths() == ["auth_type.password"]


def test_secret_shape_decoded_at_boundary():
    raw = {
        "kind": "rdp",
        "id": "r1",
        "password": {"__enc": 1, "iv": "aaa", "data": "bbb"},
        "gateway_password": None,
    }
    rdp = RdpConnection.model_validate(raw)
    assert isinstance(rdp.password, EncryptedPayload)
    assert rdp.gateway_password == ""
    legacy = RdpConnection.model_validate({"id": "r2", "password": "hunter2"})
    assert legacy.password == "hunter2"


def test_serialize_then_deserialize_unlocked():
    conn = RdpConnection(id="r1", password="rdp-pass", gateway_password="gw-pass")
    stored = serialize_secrets(conn, unlocked())
    assert isinstance(stored.password, EncryptedPayload)
    assert isinstance(stored.gateway_password, EncryptedPayload)
    assert decrypt_string(stored.password, PASSPHRASE, SALT) == "rdp-pass"

    loaded = deserialize_secrets(stored, unlocked())
    assert loaded.password == "rdp-pass"
    assert loaded.gateway_password == "gw-pass"
    # the input record is not mutated
    assert conn.password == "rdp-pass"


def test_deserialize_locked_yields_empty_never_ciphertext():
    stored = serialize_secrets(SshConnection(auth_type=PasswordAuth(password="pw")), unlocked())
    loaded = deserialize_secrets(stored, locked())
    assert loaded.auth_type.password == ""


def test_deserialize_wrong_key_fails_soft():
    stored = serialize_secrets(SshConnection(auth_type=PasswordAuth(password="pw")), unlocked())
    wrong = SecurityContext(master_key="wrong-passphrase", encryption_salt=SALT, persist_secrets=True)
    loaded = deserialize_secrets(stored, wrong)
    assert loaded.auth_type.password == ""


def test_serialize_blank_is_explicit_clear():
    conn = SshConnection(auth_type=PrivateKeyAuth(key_path="~/.ssh/id", key_content="KEY", passphrase="   "))
    stored = serialize_secrets(conn, unlocked())
    assert isinstance(stored.auth_type.key_content, EncryptedPayload)
    assert stored.auth_type.passphrase == ""
    assert stored.auth_type.key_path == "~/.ssh/id"


def test_serialize_without_key_or_persistence_writes_empty():
    conn = RdpConnection(password="rdp-pass")
    no_key = SecurityContext(master_key=None, encryption_salt="", persist_secrets=True)
    assert serialize_secrets(conn, no_key).password == ""
    no_persist = SecurityContext(master_key=PASSPHRASE, encryption_salt=SALT, persist_secrets=False)
    assert serialize_secrets(conn, no_persist).password == ""


def test_serialize_keeps_plaintext_only_when_asked():
    conn = RdpConnection(password="typed-while-locked")
    assert serialize_secrets(conn, locked()).password == ""
    assert serialize_secrets(conn, locked(), keep_plaintext=True).password == "typed-while-locked"


def test_existing_ciphertext_is_written_verbatim():
    payload = encrypt_string("pw", PASSPHRASE, SALT)
    conn = RdpConnection(password=payload)
    assert serialize_secrets(conn, locked()).password == payload
    assert serialize_secrets(conn, unlocked()).password == payload


def test_legacy_plaintext_compatibility():
    legacy = RdpConnection.model_validate({"id": "r1", "password": "old-plain"})
    assert deserialize_secrets(legacy, locked()).password == "old-plain"
    assert deserialize_secrets(legacy, unlocked()).password == "old-plain"

    assert isinstance(serialize_secrets(legacy, unlocked()).password, EncryptedPayload)
    no_key = SecurityContext(master_key=None, persist_secrets=True)
    assert serialize_secrets(legacy, no_key).password == ""


def test_encryption_failure_aborts():
    bad = SecurityContext(master_key=PASSPHRASE, encryption_salt="not base64!", persist_secrets=True)
    with pytest.raises(CryptoError):
        serialize_secrets(RdpConnection(password="x"), bad)


def test_locked_detection_and_scrub():
    stored = serialize_secrets(AuthProfile(auth_type=PasswordAuth(password="pw")), unlocked())
    assert record_contains_encrypted_values(stored)
    assert has_locked_secrets(stored, locked())
    assert not has_locked_secrets(stored, unlocked())

    scrubbed = scrub_secrets(stored)
    assert scrubbed.auth_type.password == ""
    assert not record_contains_encrypted_values(scrubbed)
