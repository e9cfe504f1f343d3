import os
from pathlib import Path

import pytest

from hardlink_deduplicator.fs import LocalFileSystem


class FaultyFileSystem(LocalFileSystem):
    """
    LocalFileSystem that records reads and raises configured errors.
    Faults are keyed by (operation, file name): `link` uses the existing
    file's name, `rename` the destination's.
    """

    def __init__(self):
        self.faults = {}
        self.opened = []

    def fail(self, op: str, name: str, exc: Exception):
        self.faults[(op, name)] = exc

    def _check(self, op: str, path):
        exc = self.faults.get((op, Path(path).name))
        if exc is not None:
            raise exc

    def stat(self, path):
        self._check("stat", path)
        return super().stat(path)

    def open_read(self, path):
        self._check("open", path)
        self.opened.append(Path(path))
        return super().open_read(path)

    def link(self, existing, new_path):
        self._check("link", existing)
        super().link(existing, new_path)

    def rename(self, src, dest):
        self._check("rename", dest)
        super().rename(src, dest)

    def remove(self, path):
        self._check("remove", path)
        super().remove(path)


@pytest.fixture
def faulty_fs():
    return FaultyFileSystem()


@pytest.fixture
def make_tree(tmp_path):
    """Returns a helper that writes {relative path: bytes|str} under a fresh root."""
    root = tmp_path / "tree"
    root.mkdir()

    def _make(files: dict) -> Path:
        for rel, content in files.items():
            p = root / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, str):
                content = content.encode("utf-8")
            p.write_bytes(content)
        return root

    return _make


def _snapshot(root: Path) -> dict:
    """(inode, nlink, mtime_ns, content) for every regular file below root."""
    state = {}
    for dirpath, _, filenames in os.walk(root):
        for name in filenames:
            p = Path(dirpath) / name
            st = os.lstat(p)
            state[p.relative_to(root).as_posix()] = (st.st_ino, st.st_nlink, st.st_mtime_ns, p.read_bytes())
    return state


@pytest.fixture
def snapshot():
    return _snapshot
