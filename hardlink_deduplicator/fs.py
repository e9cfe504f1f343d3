"""
Narrow filesystem interface used by the deduplicator.

Everything that touches the disk goes through a LocalFileSystem instance, so
tests can substitute a subclass that injects failures.
"""
import os
from pathlib import Path
from typing import BinaryIO


class LocalFileSystem:
    def stat(self, path: Path) -> os.stat_result:
        """Stat without following symlinks."""
        return os.lstat(path)

    def open_read(self, path: Path) -> BinaryIO:
        return open(path, 'rb')

    def link(self, existing: Path, new_path: Path):
        os.link(existing, new_path, follow_symlinks=False)

    def rename(self, src: Path, dest: Path):
        """Atomically replaces `dest` when it already exists."""
        os.replace(src, dest)

    def remove(self, path: Path):
        os.unlink(path)

    def scandir(self, path: Path):
        return os.scandir(path)
