import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class MasterKeySession:
    """
    In-memory holder for the unlocked master passphrase.

    Holds at most one value between an unlock and a lock. The slot is always replaced
    wholesale, so readers never see a partial update. Nothing here is ever persisted.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._lock = threading.Lock()
        self._passphrase: Optional[str] = None
        self._clock = clock
        self._last_active = clock()

    def __repr__(self) -> str:
        state = "unlocked" if self.is_unlocked() else "locked"
        return f"<MasterKeySession {state}>"

    def set(self, passphrase: str):
        with self._lock:
            self._passphrase = passphrase
            self._last_active = self._clock()

    def clear(self):
        with self._lock:
            self._passphrase = None

    def get(self) -> Optional[str]:
        return self._passphrase

    def is_unlocked(self) -> bool:
        return self._passphrase is not None

    def touch(self):
        self._last_active = self._clock()

    def idle_seconds(self) -> float:
        return self._clock() - self._last_active

    def lock_if_idle(self, timeout_minutes: int) -> bool:
        """Clear the session after `timeout_minutes` without activity. 0 disables."""
        if timeout_minutes <= 0 or not self.is_unlocked():
            return False
        if self.idle_seconds() < timeout_minutes * 60:
            return False
        self.clear()
        logger.info("master key session locked after %d idle minute(s)", timeout_minutes)
        return True


_default_session = MasterKeySession()


def default_session() -> MasterKeySession:
    return _default_session


def set_master_key_session(passphrase: str):
    _default_session.set(passphrase)


def clear_master_key_session():
    _default_session.clear()


def get_master_key_session() -> Optional[str]:
    return _default_session.get()
