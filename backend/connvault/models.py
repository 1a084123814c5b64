from __future__ import annotations
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
import time
import uuid

# --- Encrypted secret values ---

class EncryptedPayload(BaseModel):
    """On-disk form of one encrypted secret: {"__enc": 1, "iv": ..., "data": ...}."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enc: Literal[1] = Field(default=1, alias="__enc")
    iv: str
    data: str


def is_encrypted_shape(value: Any) -> bool:
    if isinstance(value, EncryptedPayload):
        return True
    if not isinstance(value, dict):
        return False
    marker = value.get("__enc")
    return (
        marker == 1
        and not isinstance(marker, bool)
        and isinstance(value.get("iv"), str)
        and isinstance(value.get("data"), str)
    )


def _decode_secret(value: Any) -> Any:
    # Shape decides: payload dicts become EncryptedPayload, strings are legacy plaintext,
    # anything else (None, numbers, half-formed dicts) is an unset secret.
    if isinstance(value, EncryptedPayload):
        return value
    if is_encrypted_shape(value):
        return EncryptedPayload.model_validate(value)
    if isinstance(value, str):
        return value
    return ""


Secret = Annotated[Union[EncryptedPayload, str], BeforeValidator(_decode_secret)]


# --- Secret field accessors ---

class SecretFields(BaseModel):
    """
    Uniform secret accessor list shared by every secret-bearing variant.

    `secret_fields` names direct secret attributes, `nested_secret_fields` names
    attributes holding another SecretFields model (e.g. an SSH auth method).
    Paths are dotted: "password", "auth_type.key_content".
    """

    secret_fields: ClassVar[Tuple[str, ...]] = ()
    nested_secret_fields: ClassVar[Tuple[str, ...]] = ()

    def secret_paths(self) -> List[str]:
        paths = list(self.secret_fields)
        for name in self.nested_secret_fields:
            child = getattr(self, name, None)
            if isinstance(child, SecretFields):
                paths.extend(f"{name}.{p}" for p in child.secret_paths())
        return paths

    def _owner(self, path: str) -> Tuple[Any, str]:
        *parents, leaf = path.split(".")
        owner: Any = self
        for name in parents:
            owner = getattr(owner, name)
        return owner, leaf

    def get_secret(self, path: str) -> Union[EncryptedPayload, str]:
        owner, leaf = self._owner(path)
        return getattr(owner, leaf)

    def set_secret(self, path: str, value: Union[EncryptedPayload, str]) -> None:
        owner, leaf = self._owner(path)
        setattr(owner, leaf, value)


# --- Auth methods ---

class PasswordAuth(SecretFields):
    secret_fields: ClassVar[Tuple[str, ...]] = ("password",)

    type: Literal["Password"] = "Password"
    password: Secret = ""


class PrivateKeyAuth(SecretFields):
    secret_fields: ClassVar[Tuple[str, ...]] = ("key_content", "passphrase")

    type: Literal["PrivateKey"] = "PrivateKey"
    key_path: str = ""
    key_content: Secret = ""
    passphrase: Secret = ""


AuthMethod = Annotated[Union[PasswordAuth, PrivateKeyAuth], Field(discriminator="type")]


# --- Stored records ---

class VaultRecord(SecretFields):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    # Paths the user explicitly blanked in this edit. In-memory only, never dumped.
    cleared_secrets: List[str] = Field(default_factory=list, exclude=True)

    def clear_secret(self, path: str) -> None:
        self.set_secret(path, "")
        if path not in self.cleared_secrets:
            self.cleared_secrets.append(path)


class SshConnection(VaultRecord):
    nested_secret_fields: ClassVar[Tuple[str, ...]] = ("auth_type",)

    kind: Literal["ssh"] = "ssh"
    name: str = "New Connection"
    tags: List[str] = []
    color: Optional[str] = None
    host: str = ""
    port: int = 22
    username: str = "root"
    auth_type: AuthMethod = Field(default_factory=PasswordAuth)
    auth_profile_id: Optional[str] = None


class RdpConnection(VaultRecord):
    secret_fields: ClassVar[Tuple[str, ...]] = ("password", "gateway_password")

    kind: Literal["rdp"] = "rdp"
    name: str = "New Connection"
    tags: List[str] = []
    color: Optional[str] = None
    host: str = ""
    port: int = 3389
    username: str = ""
    password: Secret = ""
    gateway_host: Optional[str] = None
    gateway_username: Optional[str] = None
    gateway_password: Secret = ""
    gateway_domain: Optional[str] = None
    resolution_width: Optional[int] = None
    resolution_height: Optional[int] = None
    color_depth: Optional[Literal[16, 24, 32]] = None
    cert_policy: Literal["default", "ignore"] = "default"
    redirect_clipboard: bool = True
    redirect_audio: bool = False
    redirect_drives: bool = False


ConnectionRecord = Annotated[Union[SshConnection, RdpConnection], Field(discriminator="kind")]


class AuthProfile(VaultRecord):
    nested_secret_fields: ClassVar[Tuple[str, ...]] = ("auth_type",)

    name: str = "New Profile"
    username: str = "root"
    auth_type: AuthMethod = Field(default_factory=PasswordAuth)
    public_key: Optional[str] = None


# --- Security state ---

class MasterKeyMaterial(BaseModel):
    hash: str = ""
    verification_salt: str = ""
    encryption_salt: str = ""
    lock_timeout_minutes: int = 0

    @property
    def configured(self) -> bool:
        return bool(self.hash and self.verification_salt)


class SecurityContext(BaseModel):
    """Per-operation view of the vault. Recomputed every time, never persisted."""

    master_key: Optional[str] = Field(default=None, repr=False, exclude=True)
    encryption_salt: str = ""
    persist_secrets: bool = True
    has_master_key: bool = False

    @property
    def can_encrypt(self) -> bool:
        return bool(self.master_key and self.encryption_salt and self.persist_secrets)

    @property
    def is_locked(self) -> bool:
        return self.has_master_key and not self.master_key

    @property
    def merge_on_save(self) -> bool:
        return self.is_locked and self.persist_secrets


class VaultStatus(BaseModel):
    has_master_key: bool
    locked: bool
    persist_secrets: bool
    lock_timeout_minutes: int = 0


# --- Export ---

class ExportBundle(BaseModel):
    version: int = 1
    exported_at: float = Field(default_factory=time.time)
    connections: List[ConnectionRecord] = []
    profiles: List[AuthProfile] = []
    settings: Dict[str, Any] = {}
