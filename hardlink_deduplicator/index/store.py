"""
Persistent per-tree index of file fingerprints.
"""
import csv
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional

from .. import config
from ..exceptions import CorruptIndexError, IndexSaveError
from ..fs import LocalFileSystem
from ..models import FileRecord
from .schema import check_header, format_row, parse_row


def path_identity(root: Path, path: Path) -> str:
    """Stable index key for a path: relative to the root, forward slashes."""
    return path.relative_to(root).as_posix()


class FileIndex:
    """
    Maps path identity -> FileRecord for one tree.

    Records are keyed by path rather than inode because inode numbers are
    reused after deletion.
    """

    def __init__(self, root: Path, fs: Optional[LocalFileSystem] = None):
        self.root = root
        self.fs = fs or LocalFileSystem()
        self.records: Dict[str, FileRecord] = {}
        # True once the in-memory records differ from the file on disk
        self.dirty = False
        # Upserts can come from hashing/linking worker threads
        self._write_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self.root / config.INDEX_FILE_NAME

    @classmethod
    def load(cls, root: Path, fs: Optional[LocalFileSystem] = None) -> "FileIndex":
        """
        Reads the index of `root`. A missing or empty file yields an empty index.
        Raises CorruptIndexError on any malformed content.
        """
        index = cls(root, fs)
        try:
            f = open(index.path, 'r', encoding='utf-8', errors='surrogateescape', newline='')
        except FileNotFoundError:
            logging.info(f"No index at {index.path}, starting fresh.")
            index.dirty = True
            return index
        except OSError as e:
            raise CorruptIndexError(f"cannot open {index.path}: {e}") from e

        with f:
            reader = csv.reader(f, strict=True)
            try:
                for line, row in enumerate(reader, start=1):
                    if line == 1:
                        check_header(row)
                        continue
                    rec = parse_row(row, line)
                    if rec.path in index.records:
                        raise CorruptIndexError(f"duplicate path {rec.path!r}", line=line)
                    index.records[rec.path] = rec
            except csv.Error as e:
                raise CorruptIndexError(str(e), line=reader.line_num) from e
            except OSError as e:
                raise CorruptIndexError(f"cannot read {index.path}: {e}") from e

        logging.info(f"Loaded {len(index.records)} index records from {index.path}")
        return index

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[FileRecord]:
        return iter(self.records.values())

    def lookup(self, path: str) -> Optional[FileRecord]:
        return self.records.get(path)

    def upsert(self, rec: FileRecord):
        """Replaces any existing record for the same path."""
        with self._write_lock:
            if self.records.get(rec.path) != rec:
                self.records[rec.path] = rec
                self.dirty = True

    def remove(self, path: str):
        with self._write_lock:
            if self.records.pop(path, None) is not None:
                self.dirty = True

    def retain(self, paths: Iterable[str]) -> int:
        """Drops every record whose path is not in `paths`. Returns how many were dropped."""
        keep = set(paths)
        with self._write_lock:
            stale = [p for p in self.records if p not in keep]
            for p in stale:
                del self.records[p]
            if stale:
                self.dirty = True
        if stale:
            logging.debug(f"Pruned {len(stale)} index records for files no longer present")
        return len(stale)

    def save(self):
        """
        Writes the full index next to the tree.

        The rows go to a temporary file in the same directory which is then
        renamed over the old index, so readers only ever see a complete file.
        """
        tmp_path = self.root / f".{config.INDEX_FILE_NAME.lstrip('.')}.{uuid.uuid4().hex[:8]}{config.TEMP_LINK_SUFFIX}"
        with self._write_lock:
            rows = [format_row(self.records[p]) for p in sorted(self.records)]

        try:
            with open(tmp_path, 'w', encoding='utf-8', errors='surrogateescape', newline='') as f:
                writer = csv.writer(f, lineterminator="\n")
                writer.writerow(config.INDEX_COLUMNS)
                writer.writerows(rows)
                f.flush()
                os.fsync(f.fileno())
            self.fs.rename(tmp_path, self.path)
        except OSError as e:
            try:
                self.fs.remove(tmp_path)
            except FileNotFoundError:
                pass
            except OSError as cleanup_err:
                logging.warning(f"Failed to remove temporary index {tmp_path}: {cleanup_err}")
            raise IndexSaveError(f"Failed to save index {self.path}: {e}") from e

        self.dirty = False

        logging.info(f"Saved {len(rows)} index records to {self.path}")
