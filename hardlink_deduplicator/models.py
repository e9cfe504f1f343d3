from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


@dataclass(frozen=True)
class FileMetadata:
    """
    What the prober observed about a regular file.
    """
    device: int
    inode: int
    size: int
    mtime_ns: int
    nlink: int


@dataclass
class FileRecord:
    """
    One row of the persistent index.
    `path` is the POSIX-style path relative to the tree root.
    """
    path: str
    size: int
    mtime_ns: int
    device: int
    inode: int
    fingerprint: str

    def is_fresh(self, meta: FileMetadata) -> bool:
        """The cached fingerprint is reusable only while size and mtime are unchanged."""
        return self.size == meta.size and self.mtime_ns == meta.mtime_ns

    @classmethod
    def from_metadata(cls, path: str, meta: FileMetadata, fingerprint: str) -> "FileRecord":
        return cls(
            path=path,
            size=meta.size,
            mtime_ns=meta.mtime_ns,
            device=meta.device,
            inode=meta.inode,
            fingerprint=fingerprint,
        )


@dataclass(frozen=True)
class GroupMember:
    """A scanned file inside a FingerprintGroup."""
    path: str
    abs_path: Path
    fingerprint: str
    device: int
    inode: int
    size: int
    nlink: int = 1
    mtime_ns: int = 0


@dataclass
class LinkPlan:
    """
    One device partition of a FingerprintGroup that needs work:
    every duplicate gets replaced by a hardlink to `canonical`.
    """
    fingerprint: str
    canonical: GroupMember
    duplicates: List[GroupMember]


@dataclass
class Failure:
    path: str
    stage: str      # probe/hash/link/index
    message: str


@dataclass
class LinkAction:
    path: str
    canonical: str
    fingerprint: str
    size: int
    status: str     # linked/already-linked/planned/failed
    message: str = ""


@dataclass
class RunReport:
    """
    Counters and per-file outcomes for a single run.
    """
    root: Path
    dry_run: bool = False
    files_scanned: int = 0
    cache_hits: int = 0
    files_hashed: int = 0
    groups: int = 0
    already_linked: int = 0
    links_created: int = 0
    bytes_reclaimed: int = 0
    stale_temp_links_removed: int = 0
    index_rebuilt: bool = False
    index_saved: Optional[bool] = None
    failures: List[Failure] = field(default_factory=list)
    actions: List[LinkAction] = field(default_factory=list)

    def add_failure(self, path: str, stage: str, error: Exception):
        self.failures.append(Failure(path=path, stage=stage, message=str(error)))
