import errno
import logging
import uuid
from pathlib import Path
from typing import Optional, Tuple

from .. import config
from ..exceptions import (
    ContentMismatchError,
    CrossDeviceLinkError,
    FileChangedError,
    LinkFailedError,
    ReadError,
    RenameFailedError,
)
from ..fs import LocalFileSystem
from ..models import FileMetadata, GroupMember
from ..scanning.probe import MetadataProber


def temp_link_path(path: Path) -> Path:
    """A hidden sibling of `path` that the scanner recognises and skips."""
    return path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}{config.TEMP_LINK_SUFFIX}")


def _identity(f) -> tuple:
    """What must be unchanged since the scan: same-size in-place edits show up in mtime."""
    return (f.device, f.inode, f.size, f.mtime_ns)


class HardLinker:
    """
    Replaces a duplicate file with a hardlink to its canonical file.

    The replacement is link-to-temp-name followed by rename-over-original, so
    at every instant the duplicate's path holds either the original file or
    the new link.
    """

    def __init__(self,
                 fs: Optional[LocalFileSystem] = None,
                 prober: Optional[MetadataProber] = None,
                 verify_content: bool = False):
        self.fs = fs or LocalFileSystem()
        self.prober = prober or MetadataProber(self.fs)
        self.verify_content = verify_content

    def replace_with_link(self, canonical: GroupMember, duplicate: GroupMember) -> Tuple[FileMetadata, bool]:
        """
        Links `duplicate` to `canonical` and returns the duplicate path's new
        metadata, plus False when it already shared the canonical inode and
        nothing was done.
        Raises a LinkError subclass (or ProbeError) and leaves the duplicate
        untouched on failure.
        """
        if canonical.device != duplicate.device:
            raise CrossDeviceLinkError(
                f"Refusing to link {duplicate.abs_path} to {canonical.abs_path}: "
                f"devices {duplicate.device} != {canonical.device}"
            )

        # 1. Both files must still be what the scan saw
        canon_meta = self.prober.probe(canonical.abs_path)
        if _identity(canon_meta) != _identity(canonical):
            raise FileChangedError(f"Canonical file {canonical.abs_path} changed since it was scanned")

        dup_meta = self.prober.probe(duplicate.abs_path)
        if dup_meta.inode == canon_meta.inode and dup_meta.device == canon_meta.device:
            return dup_meta, False
        if _identity(dup_meta) != _identity(duplicate):
            raise FileChangedError(f"{duplicate.abs_path} changed since it was scanned")

        # 2. Optional paranoid check
        if self.verify_content:
            try:
                same = self._same_content(canonical.abs_path, duplicate.abs_path)
            except OSError as e:
                raise ReadError(f"Failed to compare {duplicate.abs_path} with {canonical.abs_path}: {e}") from e
            if not same:
                raise ContentMismatchError(
                    f"{duplicate.abs_path} differs from {canonical.abs_path} despite equal fingerprints"
                )

        # 3. Link under a temporary name, then rename over the duplicate
        tmp = self._link_to_temp(canonical.abs_path, duplicate.abs_path)
        try:
            self.fs.rename(tmp, duplicate.abs_path)
        except BaseException as e:
            self._discard(tmp)
            if isinstance(e, OSError):
                raise RenameFailedError(f"Failed to rename {tmp} over {duplicate.abs_path}: {e}") from e
            raise

        logging.debug(f"Linked {duplicate.abs_path} -> {canonical.abs_path}")
        return self.prober.probe(duplicate.abs_path), True

    def _link_to_temp(self, existing: Path, target: Path) -> Path:
        for _ in range(config.TEMP_LINK_ATTEMPTS):
            tmp = temp_link_path(target)
            try:
                self.fs.link(existing, tmp)
                return tmp
            except FileExistsError:
                continue
            except OSError as e:
                if e.errno == errno.EXDEV:
                    raise CrossDeviceLinkError(f"Cannot link {existing} into {target.parent}: {e}") from e
                raise LinkFailedError(f"Failed to link {existing} -> {tmp}: {e}") from e
        raise LinkFailedError(f"No free temporary name next to {target}")

    def _discard(self, tmp: Path):
        try:
            self.fs.remove(tmp)
        except FileNotFoundError:
            pass
        except OSError as e:
            logging.warning(f"Failed to remove temporary link {tmp}: {e}")

    def _same_content(self, a: Path, b: Path) -> bool:
        with self.fs.open_read(a) as fa, self.fs.open_read(b) as fb:
            while True:
                ca = fa.read(config.HASH_CHUNK_SIZE)
                cb = fb.read(config.HASH_CHUNK_SIZE)
                if ca != cb:
                    return False
                if not ca:
                    return True
