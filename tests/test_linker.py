import errno
import os
from pathlib import Path

import pytest

from hardlink_deduplicator import config
from hardlink_deduplicator.exceptions import (
    ContentMismatchError,
    CrossDeviceLinkError,
    FileChangedError,
    LinkFailedError,
    RenameFailedError,
)
from hardlink_deduplicator.linking.linker import HardLinker, temp_link_path
from hardlink_deduplicator.models import GroupMember
from hardlink_deduplicator.scanning.filesystem import is_temp_link_name


def as_member(root: Path, name: str, fingerprint: str = "fp") -> GroupMember:
    p = root / name
    st = os.lstat(p)
    return GroupMember(
        path=name,
        abs_path=p,
        fingerprint=fingerprint,
        device=st.st_dev,
        inode=st.st_ino,
        size=st.st_size,
        nlink=st.st_nlink,
        mtime_ns=st.st_mtime_ns,
    )


@pytest.fixture
def pair(tmp_path):
    (tmp_path / "a.txt").write_bytes(b"hello")
    (tmp_path / "b.txt").write_bytes(b"hello")
    return as_member(tmp_path, "a.txt"), as_member(tmp_path, "b.txt")


def leftovers(root: Path):
    return [p.name for p in root.iterdir() if p.name.endswith(config.TEMP_LINK_SUFFIX)]


def test_replace_with_link(tmp_path, pair):
    canonical, dup = pair
    meta, linked = HardLinker().replace_with_link(canonical, dup)

    assert linked
    assert meta.inode == canonical.inode
    assert meta.nlink == 2
    assert os.lstat(tmp_path / "b.txt").st_ino == canonical.inode
    assert (tmp_path / "b.txt").read_bytes() == b"hello"
    assert leftovers(tmp_path) == []


def test_already_linked_is_noop(tmp_path, pair, faulty_fs):
    canonical, dup = pair
    HardLinker().replace_with_link(canonical, dup)

    # Linking again must not touch the filesystem
    faulty_fs.fail("link", "a.txt", OSError(errno.EIO, "should not be called"))
    relinked = as_member(tmp_path, "b.txt")
    meta, linked = HardLinker(faulty_fs).replace_with_link(canonical, relinked)
    assert not linked
    assert meta.inode == canonical.inode


def test_temp_link_path_is_hidden_sibling(tmp_path):
    tmp = temp_link_path(tmp_path / "sub" / "file.bin")
    assert tmp.parent == tmp_path / "sub"
    assert tmp.name.startswith(".file.bin.")
    assert tmp.name.endswith(config.TEMP_LINK_SUFFIX)
    assert is_temp_link_name(tmp.name)


def test_link_failure_leaves_original(tmp_path, pair, faulty_fs):
    canonical, dup = pair
    faulty_fs.fail("link", "a.txt", OSError(errno.EMLINK, "Too many links"))

    with pytest.raises(LinkFailedError):
        HardLinker(faulty_fs).replace_with_link(canonical, dup)

    assert os.lstat(tmp_path / "b.txt").st_ino == dup.inode
    assert (tmp_path / "b.txt").read_bytes() == b"hello"
    assert leftovers(tmp_path) == []


def test_rename_failure_leaves_original_and_cleans_temp(tmp_path, pair, faulty_fs):
    canonical, dup = pair
    faulty_fs.fail("rename", "b.txt", OSError(errno.EACCES, "Permission denied"))

    with pytest.raises(RenameFailedError):
        HardLinker(faulty_fs).replace_with_link(canonical, dup)

    assert os.lstat(tmp_path / "b.txt").st_ino == dup.inode
    assert os.lstat(tmp_path / "a.txt").st_nlink == 1
    assert leftovers(tmp_path) == []


def test_interrupt_before_rename_keeps_original(tmp_path, pair, faulty_fs):
    canonical, dup = pair
    faulty_fs.fail("rename", "b.txt", KeyboardInterrupt())

    with pytest.raises(KeyboardInterrupt):
        HardLinker(faulty_fs).replace_with_link(canonical, dup)

    assert (tmp_path / "b.txt").read_bytes() == b"hello"
    assert os.lstat(tmp_path / "b.txt").st_ino == dup.inode
    assert leftovers(tmp_path) == []


def test_cross_device_members_are_refused(tmp_path, pair):
    canonical, dup = pair
    foreign = GroupMember(
        path=dup.path, abs_path=dup.abs_path, fingerprint=dup.fingerprint,
        device=dup.device + 1, inode=dup.inode, size=dup.size,
    )
    with pytest.raises(CrossDeviceLinkError):
        HardLinker().replace_with_link(canonical, foreign)
    assert os.lstat(tmp_path / "b.txt").st_ino == dup.inode


def test_exdev_from_link_is_cross_device_error(tmp_path, pair, faulty_fs):
    canonical, dup = pair
    faulty_fs.fail("link", "a.txt", OSError(errno.EXDEV, "Invalid cross-device link"))
    with pytest.raises(CrossDeviceLinkError):
        HardLinker(faulty_fs).replace_with_link(canonical, dup)


def test_changed_duplicate_is_skipped(tmp_path, pair):
    canonical, dup = pair
    (tmp_path / "b.txt").write_bytes(b"hello, changed")

    with pytest.raises(FileChangedError):
        HardLinker().replace_with_link(canonical, dup)
    assert (tmp_path / "b.txt").read_bytes() == b"hello, changed"


def test_same_size_edit_of_duplicate_is_kept(tmp_path, pair):
    canonical, dup = pair
    b = tmp_path / "b.txt"
    b.write_bytes(b"HELLO")
    os.utime(b, ns=(dup.mtime_ns + 10**9, dup.mtime_ns + 10**9))

    with pytest.raises(FileChangedError):
        HardLinker().replace_with_link(canonical, dup)
    assert b.read_bytes() == b"HELLO"
    assert os.lstat(b).st_ino == dup.inode
    assert leftovers(tmp_path) == []


def test_same_size_edit_of_canonical_is_not_spread(tmp_path, pair):
    canonical, dup = pair
    a = tmp_path / "a.txt"
    a.write_bytes(b"HELLO")
    os.utime(a, ns=(canonical.mtime_ns + 10**9, canonical.mtime_ns + 10**9))

    with pytest.raises(FileChangedError):
        HardLinker().replace_with_link(canonical, dup)
    assert (tmp_path / "b.txt").read_bytes() == b"hello"
    assert os.lstat(tmp_path / "b.txt").st_ino == dup.inode


def test_replaced_canonical_is_skipped(tmp_path, pair):
    canonical, dup = pair
    # Written while the old file still exists, so the inode number differs
    (tmp_path / "a.new").write_bytes(b"hello")
    os.replace(tmp_path / "a.new", tmp_path / "a.txt")

    with pytest.raises(FileChangedError):
        HardLinker().replace_with_link(canonical, dup)


def test_verify_content_detects_mismatch(tmp_path):
    (tmp_path / "a.txt").write_bytes(b"aaaaa")
    (tmp_path / "b.txt").write_bytes(b"bbbbb")
    # Pretend the fingerprints collided
    canonical = as_member(tmp_path, "a.txt")
    dup = as_member(tmp_path, "b.txt")

    with pytest.raises(ContentMismatchError):
        HardLinker(verify_content=True).replace_with_link(canonical, dup)
    assert (tmp_path / "b.txt").read_bytes() == b"bbbbb"


def test_verify_content_allows_equal_files(tmp_path, pair):
    canonical, dup = pair
    meta, linked = HardLinker(verify_content=True).replace_with_link(canonical, dup)
    assert linked
    assert meta.inode == canonical.inode
