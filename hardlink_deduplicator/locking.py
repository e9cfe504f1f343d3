"""
Exclusive per-tree run lock.

Two runs on the same tree would race on the index and on replacing the same
files, so a run holds a flock() on a lock file at the tree root for its
whole duration. The lock is released by the kernel if the process dies.
"""
import fcntl
import logging
import os
from pathlib import Path
from typing import Optional

from . import config
from .exceptions import LockError


class RunLock:
    def __init__(self, root: Path):
        self.path = root / config.LOCK_FILE_NAME
        self._fd: Optional[int] = None

    def acquire(self):
        if self._fd is not None:
            return
        try:
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise LockError(f"Cannot open lock file {self.path}: {e}") from e

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise LockError(f"Another run is already deduplicating {self.path.parent}") from None
        except OSError as e:
            os.close(fd)
            raise LockError(f"Cannot lock {self.path}: {e}") from e

        self._fd = fd
        logging.debug(f"Acquired run lock {self.path}")

    def release(self):
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
