import hashlib
from pathlib import Path
from typing import Optional

from .. import config
from ..exceptions import ReadError
from ..fs import LocalFileSystem


class FileHasher:
    def __init__(self, fs: Optional[LocalFileSystem] = None, chunk_size: int = config.HASH_CHUNK_SIZE):
        self.fs = fs or LocalFileSystem()
        self.chunk_size = chunk_size

    def fingerprint(self, path: Path) -> str:
        """
        SHA-256 over the full content, read in fixed-size chunks so memory use
        does not depend on file size.

        Any I/O error, including one after some chunks were already read,
        raises ReadError. A digest is only returned for a complete read.
        """
        h = hashlib.new(config.HASH_ALGORITHM)
        try:
            with self.fs.open_read(path) as f:
                while chunk := f.read(self.chunk_size):
                    h.update(chunk)
        except OSError as e:
            raise ReadError(f"Failed to read {path}: {e}") from e
        return h.hexdigest()
