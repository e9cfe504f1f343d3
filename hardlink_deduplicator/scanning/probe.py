import stat
from pathlib import Path
from typing import Optional

from ..exceptions import FileNotFound, NotRegularFile, PermissionDenied, ProbeError
from ..fs import LocalFileSystem
from ..models import FileMetadata


def _describe_mode(mode: int) -> str:
    if stat.S_ISDIR(mode):
        return "directory"
    if stat.S_ISLNK(mode):
        return "symlink"
    if stat.S_ISCHR(mode) or stat.S_ISBLK(mode):
        return "device"
    if stat.S_ISFIFO(mode):
        return "fifo"
    if stat.S_ISSOCK(mode):
        return "socket"
    return "special file"


class MetadataProber:
    def __init__(self, fs: Optional[LocalFileSystem] = None):
        self.fs = fs or LocalFileSystem()

    def probe(self, path: Path) -> FileMetadata:
        """
        Returns device, inode, size, mtime and link count for a regular file.
        Symlinks are never followed: a symlink is reported as NotRegularFile.
        """
        try:
            st = self.fs.stat(path)
        except FileNotFoundError as e:
            raise FileNotFound(path, "no such file") from e
        except PermissionError as e:
            raise PermissionDenied(path, "permission denied") from e
        except OSError as e:
            raise ProbeError(path, e.strerror or str(e)) from e

        if not stat.S_ISREG(st.st_mode):
            raise NotRegularFile(path, f"not a regular file ({_describe_mode(st.st_mode)})")

        return FileMetadata(
            device=st.st_dev,
            inode=st.st_ino,
            size=st.st_size,
            mtime_ns=st.st_mtime_ns,
            nlink=st.st_nlink,
        )
