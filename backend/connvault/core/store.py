import copy
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a document store cannot be read or written."""


class DocumentStore:
    """
    Small JSON key/value document persisted to one file.

    Every `set` rewrites the whole file through a temp file + os.replace, so readers
    either see the previous document or the new one. Writers in this process are
    serialized by a lock; cross-process single-writer is the caller's concern.
    """

    def __init__(self, path: Path, defaults: Optional[Dict[str, Any]] = None):
        self.path = Path(path)
        self.defaults = dict(defaults or {})
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise StorageError(f"cannot read {self.path.name}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"{self.path.name} is not a JSON object")
        return data

    def _atomic_write(self, data: Dict[str, Any]):
        tmp = self.path.with_suffix(".tmp")
        payload = json.dumps(data, indent=2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as exc:
            raise StorageError(f"cannot write {self.path.name}: {exc}") from exc

    def get(self, key: str, default: Any = None) -> Any:
        data = self._read()
        if key in data and data[key] is not None:
            return data[key]
        if default is not None:
            return default
        return copy.deepcopy(self.defaults.get(key))

    def set(self, key: str, value: Any):
        with self._lock:
            data = self._read()
            data[key] = value
            self._atomic_write(data)

    def update(self, values: Dict[str, Any]):
        with self._lock:
            data = self._read()
            data.update(values)
            self._atomic_write(data)

    def snapshot(self) -> Dict[str, Any]:
        merged = copy.deepcopy(self.defaults)
        merged.update(self._read())
        return merged
