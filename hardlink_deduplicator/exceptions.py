"""
Custom exception hierarchy for the hardlink deduplicator.

Per-file errors (probing, hashing, linking) are caught by the engine and
recorded on the run report. Run-level errors propagate to the CLI.
"""


class DeduplicatorError(Exception):
    """Base exception for all deduplicator errors."""
    pass


class InvalidRootError(DeduplicatorError):
    """Raised when the target root does not exist or is not a directory."""
    pass


class LockError(DeduplicatorError):
    """Raised when another run already holds the lock on a root."""
    pass


# --- Probing ---

class ProbeError(DeduplicatorError):
    """Raised when a path's metadata cannot be read."""

    def __init__(self, path, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class FileNotFound(ProbeError):
    """The path vanished between scanning and probing."""
    pass


class PermissionDenied(ProbeError):
    """The path exists but cannot be stat-ed or read."""
    pass


class NotRegularFile(ProbeError):
    """The path is a directory, symlink, device, fifo or socket."""
    pass


# --- Hashing ---

class ReadError(DeduplicatorError):
    """Raised when reading a file's content fails partway through."""
    pass


# --- Index ---

class CorruptIndexError(DeduplicatorError):
    """Raised when the index file cannot be parsed."""

    def __init__(self, message: str, line: int = 0):
        if line:
            message = f"line {line}: {message}"
        super().__init__(message)
        self.line = line


class IndexSaveError(DeduplicatorError):
    """Raised when the index cannot be written back to disk."""
    pass


# --- Linking ---

class LinkError(DeduplicatorError):
    """Base class for failures while replacing a duplicate with a hardlink."""
    pass


class CrossDeviceLinkError(LinkError):
    """
    A link across devices was attempted.

    The planner partitions by device, so this signals a bug rather than a
    user error.
    """
    pass


class LinkFailedError(LinkError):
    """Creating the temporary hardlink failed. The original is untouched."""
    pass


class RenameFailedError(LinkError):
    """Renaming the temporary link over the original failed. The original is untouched."""
    pass


class FileChangedError(LinkError):
    """The duplicate or its canonical file changed after it was scanned."""
    pass


class ContentMismatchError(LinkError):
    """Byte comparison disagreed with the fingerprint; nothing was replaced."""
    pass
