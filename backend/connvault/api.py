from typing import Any, Callable, Dict, List
from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from connvault.models import (
    AuthProfile,
    ConnectionRecord,
    ExportBundle,
    VaultStatus,
)
from connvault.core.crypto import CryptoUnavailableError
from connvault.core.master_key import InvalidPassphraseError, PassphraseValidationError
from connvault.core.storage import VaultStorage, get_storage
from connvault.core.store import StorageError

router = APIRouter()


def active_storage(storage: VaultStorage = Depends(get_storage)) -> VaultStorage:
    # Every API call counts as user activity for the idle lock.
    try:
        storage.enforce_idle_lock()
    except StorageError as ex:
        raise HTTPException(status_code=500, detail=str(ex))
    storage.session.touch()
    return storage


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    # Key derivation and file I/O run off the event loop.
    try:
        return await run_in_threadpool(fn, *args)
    except PassphraseValidationError as ex:
        raise HTTPException(status_code=422, detail=str(ex))
    except InvalidPassphraseError:
        raise HTTPException(status_code=401, detail="invalid passphrase")
    except CryptoUnavailableError:
        raise HTTPException(status_code=503, detail="encryption unavailable")
    except StorageError as ex:
        raise HTTPException(status_code=500, detail=str(ex))


def _passphrase(payload: Dict[str, Any], key: str = "passphrase") -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise HTTPException(status_code=422, detail=f"{key} is required")
    return value


# --- Security ---
@router.get("/security/status", response_model=VaultStatus)
async def get_status(storage: VaultStorage = Depends(active_storage)):
    return await _call(storage.status)


@router.post("/security/master-key", response_model=VaultStatus)
async def set_master_key(payload: Dict[str, Any] = Body(...), storage: VaultStorage = Depends(active_storage)):
    timeout = payload.get("lock_timeout_minutes")
    if timeout is not None and not isinstance(timeout, int):
        raise HTTPException(status_code=422, detail="lock_timeout_minutes must be an integer")
    await _call(storage.set_master_key, _passphrase(payload), payload.get("confirmation"), timeout)
    return await _call(storage.status)


@router.post("/security/master-key/remove", response_model=VaultStatus)
async def remove_master_key(payload: Dict[str, Any] = Body(...), storage: VaultStorage = Depends(active_storage)):
    await _call(storage.remove_master_key, _passphrase(payload))
    return await _call(storage.status)


@router.post("/security/unlock", response_model=VaultStatus)
async def unlock(payload: Dict[str, Any] = Body(...), storage: VaultStorage = Depends(active_storage)):
    ok = await _call(storage.unlock, _passphrase(payload))
    if not ok:
        raise HTTPException(status_code=401, detail="invalid passphrase")
    return await _call(storage.status)


@router.post("/security/lock", response_model=VaultStatus)
async def lock(storage: VaultStorage = Depends(active_storage)):
    storage.lock()
    return await _call(storage.status)


@router.post("/security/lock-timeout", response_model=VaultStatus)
async def set_lock_timeout(payload: Dict[str, Any] = Body(...), storage: VaultStorage = Depends(active_storage)):
    minutes = payload.get("minutes")
    if not isinstance(minutes, int):
        raise HTTPException(status_code=422, detail="minutes must be an integer")
    await _call(storage.set_lock_timeout, minutes)
    return await _call(storage.status)


@router.post("/security/persist-secrets", response_model=VaultStatus)
async def set_persist_secrets(payload: Dict[str, Any] = Body(...), storage: VaultStorage = Depends(active_storage)):
    await _call(storage.set_persist_secrets, bool(payload.get("enabled")))
    return await _call(storage.status)


# --- Connections ---
@router.get("/connections", response_model=List[ConnectionRecord])
async def list_connections(storage: VaultStorage = Depends(active_storage)):
    return await _call(storage.load_connections)


@router.post("/connections")
async def save_connections(connections: List[ConnectionRecord], storage: VaultStorage = Depends(active_storage)):
    await _call(storage.save_connections, connections)
    return {"status": "ok"}


@router.get("/connections/resolved", response_model=List[ConnectionRecord])
async def list_resolved_connections(storage: VaultStorage = Depends(active_storage)):
    return await _call(storage.load_resolved_connections)


@router.get("/connections/locked")
async def list_locked_connections(storage: VaultStorage = Depends(active_storage)) -> Dict[str, List[str]]:
    return {"ids": await _call(storage.locked_connection_ids)}


# --- Auth profiles ---
@router.get("/profiles", response_model=List[AuthProfile])
async def list_profiles(storage: VaultStorage = Depends(active_storage)):
    return await _call(storage.load_profiles)


@router.post("/profiles")
async def save_profiles(profiles: List[AuthProfile], storage: VaultStorage = Depends(active_storage)):
    await _call(storage.save_profiles, profiles)
    return {"status": "ok"}


@router.delete("/profiles/{profile_id}")
async def delete_profile(profile_id: str, storage: VaultStorage = Depends(active_storage)):
    detached = await _call(storage.delete_profile, profile_id)
    return {"status": "ok", "detached_connections": detached}


# --- Export ---
@router.get("/export", response_model=ExportBundle)
async def export_bundle(storage: VaultStorage = Depends(active_storage)):
    return await _call(storage.export_bundle)
