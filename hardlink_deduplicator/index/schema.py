"""
Row format of the index file.

The index is a CSV file with a header row followed by one row per tracked
file, sorted by path:

    path,size,mtime_ns,device,inode,fingerprint

`path` is relative to the tree root with forward slashes. `mtime_ns` is the
integer nanosecond mtime so values survive a load/save cycle unchanged.
"""
import hashlib
import string
from pathlib import PurePosixPath
from typing import List

from .. import config
from ..exceptions import CorruptIndexError
from ..models import FileRecord

FINGERPRINT_LENGTH = hashlib.new(config.HASH_ALGORITHM).digest_size * 2
_HEX = set(string.hexdigits.lower())


def check_header(row: List[str]):
    if row != config.INDEX_COLUMNS:
        raise CorruptIndexError(f"unexpected header {row!r}", line=1)


def _parse_int(value: str, column: str, line: int) -> int:
    try:
        number = int(value)
    except ValueError:
        raise CorruptIndexError(f"{column} is not an integer: {value!r}", line=line) from None
    if number < 0:
        raise CorruptIndexError(f"{column} is negative: {value!r}", line=line)
    return number


def _check_path(value: str, line: int):
    if not value:
        raise CorruptIndexError("empty path", line=line)
    p = PurePosixPath(value)
    if p.is_absolute() or ".." in p.parts or str(p) != value:
        raise CorruptIndexError(f"path is not a normalized relative path: {value!r}", line=line)


def parse_row(row: List[str], line: int) -> FileRecord:
    if len(row) != len(config.INDEX_COLUMNS):
        raise CorruptIndexError(
            f"expected {len(config.INDEX_COLUMNS)} columns, got {len(row)}", line=line
        )

    path, size, mtime_ns, device, inode, fingerprint = row
    _check_path(path, line)
    if len(fingerprint) != FINGERPRINT_LENGTH or not set(fingerprint) <= _HEX:
        raise CorruptIndexError(f"malformed fingerprint {fingerprint!r}", line=line)

    return FileRecord(
        path=path,
        size=_parse_int(size, "size", line),
        mtime_ns=_parse_int(mtime_ns, "mtime_ns", line),
        device=_parse_int(device, "device", line),
        inode=_parse_int(inode, "inode", line),
        fingerprint=fingerprint,
    )


def format_row(rec: FileRecord) -> List[str]:
    return [
        rec.path,
        str(rec.size),
        str(rec.mtime_ns),
        str(rec.device),
        str(rec.inode),
        rec.fingerprint,
    ]
