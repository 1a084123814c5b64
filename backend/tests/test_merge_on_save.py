import json
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from connvault.models import (
    AuthProfile,
    PasswordAuth,
    PrivateKeyAuth,
    RdpConnection,
    SecurityContext,
    SshConnection,
)
from connvault.core.crypto import encrypt_string, generate_salt
from connvault.core.merge import apply_merge_policy, merge_untouched_secrets
from connvault.core.session import MasterKeySession
from connvault.core.storage import VaultStorage

PASSPHRASE = "correct-horse-1"


def _locked_ctx():
    return SecurityContext(master_key=None, encryption_salt="c2FsdA==", persist_secrets=True, has_master_key=True)


def _raw_connections(workspace: Path):
    return json.loads((workspace / "connections.json").read_text())["connections"]


def test_untouched_field_keeps_previous_ciphertext():
    payload = encrypt_string("pw", PASSPHRASE, "c2FsdA==")
    previous = RdpConnection(id="r1", password=payload)
    merged, carried = merge_untouched_secrets(RdpConnection(id="r1", password=""), previous)
    assert merged.password == payload
    assert carried == 1


def test_cleared_field_is_not_merged():
    payload = encrypt_string("pw", PASSPHRASE, "c2FsdA==")
    previous = RdpConnection(id="r1", password=payload)
    current = RdpConnection(id="r1", password="pw-not-loaded")
    current.clear_secret("password")
    merged, carried = merge_untouched_secrets(current, previous)
    assert merged.password == ""
    assert carried == 0


def test_typed_value_wins_over_previous_ciphertext():
    payload = encrypt_string("pw", PASSPHRASE, "c2FsdA==")
    previous = RdpConnection(id="r1", password=payload)
    merged, _ = merge_untouched_secrets(RdpConnection(id="r1", password="new"), previous)
    assert merged.password == "new"


def test_auth_method_change_does_not_carry_foreign_paths():
    payload = encrypt_string("pw", PASSPHRASE, "c2FsdA==")
    previous = SshConnection(id="s1", auth_type=PasswordAuth(password=payload))
    current = SshConnection(id="s1", auth_type=PrivateKeyAuth())
    merged, carried = merge_untouched_secrets(current, previous)
    assert carried == 0
    assert merged.auth_type.key_content == ""


def test_policy_inactive_when_unlocked_or_not_persisting():
    payload = encrypt_string("pw", PASSPHRASE, "c2FsdA==")
    on_disk = [RdpConnection(id="r1", password=payload)]
    records = [RdpConnection(id="r1", password="")]
    unlocked = SecurityContext(master_key=PASSPHRASE, encryption_salt="c2FsdA==", has_master_key=True)
    assert apply_merge_policy(records, on_disk, unlocked)[0].password == ""
    no_persist = SecurityContext(persist_secrets=False, has_master_key=True)
    assert apply_merge_policy(records, on_disk, no_persist)[0].password == ""
    assert apply_merge_policy(records, on_disk, _locked_ctx())[0].password == payload


def test_new_record_has_nothing_to_merge():
    merged = apply_merge_policy([RdpConnection(id="new", password="")], [], _locked_ctx())
    assert merged[0].password == ""


def test_scenario_b_locked_save_preserves_ciphertext(tmp_path):
    session = MasterKeySession()
    storage = VaultStorage(workspace_dir=str(tmp_path), session=session)
    storage.set_master_key(PASSPHRASE, PASSPHRASE, lock_timeout_minutes=10)
    storage.save_connections([SshConnection(id="s1", name="db", auth_type=PasswordAuth(password="pw"))])
    before = _raw_connections(tmp_path)[0]["auth_type"]["password"]
    assert before["__enc"] == 1

    session.clear()
    loaded = storage.load_connections()
    assert loaded[0].auth_type.password == ""
    loaded[0].name = "db-renamed"
    storage.save_connections(loaded)

    after = _raw_connections(tmp_path)[0]
    assert after["name"] == "db-renamed"
    assert after["auth_type"]["password"] == before

    assert storage.unlock(PASSPHRASE)
    assert storage.load_connections()[0].auth_type.password == "pw"


def test_locked_explicit_clear_writes_empty(tmp_path):
    session = MasterKeySession()
    storage = VaultStorage(workspace_dir=str(tmp_path), session=session)
    storage.set_master_key(PASSPHRASE, PASSPHRASE)
    storage.save_profiles([AuthProfile(id="p1", auth_type=PasswordAuth(password="pw"))])

    session.clear()
    profile = storage.load_profiles()[0]
    profile.clear_secret("auth_type.password")
    storage.save_profiles([profile])

    raw = json.loads((tmp_path / "keys.json").read_text())["profiles"][0]
    assert raw["auth_type"]["password"] == ""
    assert "cleared_secrets" not in raw


def test_locked_typed_value_is_stored_as_plaintext(tmp_path):
    session = MasterKeySession()
    storage = VaultStorage(workspace_dir=str(tmp_path), session=session)
    storage.set_master_key(PASSPHRASE, PASSPHRASE)
    storage.save_connections([RdpConnection(id="r1", password="pw", gateway_password="gw")])

    session.clear()
    conn = storage.load_connections()[0]
    conn.password = "typed-while-locked"
    storage.save_connections([conn])

    raw = _raw_connections(tmp_path)[0]
    assert raw["password"] == "typed-while-locked"
    assert raw["gateway_password"]["__enc"] == 1
