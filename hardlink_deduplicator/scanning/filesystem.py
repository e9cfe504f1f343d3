import logging
import re
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .. import config
from ..fs import LocalFileSystem


# ".<name>.<8 hex>.hldedup-tmp", as written by temp_link_path() and FileIndex.save()
TEMP_LINK_RE = re.compile(
    r"^\.(?P<name>.+)\.[0-9a-f]{8}" + re.escape(config.TEMP_LINK_SUFFIX) + r"\Z", re.DOTALL
)


def is_temp_link_name(name: str) -> bool:
    return TEMP_LINK_RE.match(name) is not None


def is_index_temp_name(name: str) -> bool:
    m = TEMP_LINK_RE.match(name)
    return m is not None and m.group("name") == config.INDEX_FILE_NAME.lstrip(".")


class TreeScanner:
    """
    Enumerates the regular files of a tree in a fixed order.

    Files of a directory come first (sorted by name), then its
    subdirectories, depth-first. Symlinks, devices, fifos and sockets are
    skipped, and symlinked directories are never entered.
    """

    def __init__(self, fs: Optional[LocalFileSystem] = None):
        self.fs = fs or LocalFileSystem()
        # Populated while scan() runs
        self.errors: List[Tuple[Path, OSError]] = []
        self.temp_links: List[Path] = []

    def scan(self, root: Path) -> Iterator[Path]:
        self.errors = []
        self.temp_links = []
        reserved = {
            root / config.INDEX_FILE_NAME,
            root / config.LOCK_FILE_NAME,
        }

        for path in self._iter_files(root):
            if path in reserved:
                continue
            if is_temp_link_name(path.name):
                self.temp_links.append(path)
                continue
            yield path

    def _iter_files(self, root: Path) -> Iterator[Path]:
        """Depth-first walker using os.scandir for speed."""
        stack = [root]
        while stack:
            current = stack.pop()

            try:
                with self.fs.scandir(current) as it:
                    entries = list(it)
            except OSError as e:
                if current == root:
                    raise
                logging.warning(f"Cannot read directory {current}: {e}")
                self.errors.append((current, e))
                continue

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name)

            dirs = []
            files = []
            for e in entries:
                try:
                    if e.is_dir(follow_symlinks=False):
                        dirs.append(Path(e.path))
                    elif e.is_file(follow_symlinks=False):
                        files.append(Path(e.path))
                except OSError as err:
                    logging.warning(f"Cannot stat {e.path}: {err}")
                    self.errors.append((Path(e.path), err))

            # Push dirs to stack (reversed so we process A before Z)
            for d in reversed(dirs):
                stack.append(d)

            for f in files:
                yield f
