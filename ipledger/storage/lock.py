# ipledger/storage/lock.py
import errno
import fcntl
import logging
import os
import time
from pathlib import Path
from typing import Optional

from . import LockTimeout

logger = logging.getLogger(__name__)


class PoolLock:
    """
    Exclusive cross-process lock on a pool directory.

    Uses flock(2) on a descriptor opened on the directory itself, so no lock
    file appears among the reservation records. The kernel drops the lock if
    the holding process dies. A handle is not re-entrant and is meant for one
    thread at a time; concurrent threads each open their own handle.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self, timeout: Optional[float] = None) -> None:
        """Block until the lock is held, or raise LockTimeout after `timeout` seconds."""
        if self._fd is not None:
            raise RuntimeError(f"Lock on {self.path} already held by this handle")

        fd = os.open(self.path, os.O_RDONLY)
        try:
            if timeout is None:
                fcntl.flock(fd, fcntl.LOCK_EX)
            else:
                self._acquire_with_timeout(fd, timeout)
        except BaseException:
            os.close(fd)
            raise

        self._fd = fd
        logger.debug("Acquired pool lock %s", self.path)

    def _acquire_with_timeout(self, fd: int, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        delay = 0.01  # backoff doubles up to 500ms between tries
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except OSError as e:
                if e.errno not in (errno.EAGAIN, errno.EWOULDBLOCK):
                    raise
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LockTimeout(f"Timed out after {timeout}s waiting for lock on {self.path}")
            time.sleep(min(delay, remaining))
            delay = min(delay * 2.0, 0.5)

    def release(self) -> None:
        if self._fd is None:
            raise RuntimeError(f"Lock on {self.path} is not held")
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("Released pool lock %s", self.path)

    def close(self) -> None:
        if self._fd is not None:
            self.release()

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
