from pathlib import Path

from hardlink_deduplicator.linking.planner import (
    choose_canonical,
    group_by_fingerprint,
    partition_by_device,
    plan_links,
)
from hardlink_deduplicator.models import GroupMember


def member(path, fingerprint="f1", inode=1, device=1, size=5, nlink=1):
    return GroupMember(
        path=path,
        abs_path=Path("/root") / path,
        fingerprint=fingerprint,
        device=device,
        inode=inode,
        size=size,
        nlink=nlink,
    )


def test_group_by_fingerprint_keeps_scan_order():
    members = [member("b", "f1"), member("c", "f2"), member("a", "f1")]
    groups = group_by_fingerprint(members)
    assert [m.path for m in groups["f1"]] == ["b", "a"]
    assert [m.path for m in groups["f2"]] == ["c"]


def test_partition_by_device():
    parts = partition_by_device([member("a", device=1), member("b", device=2), member("c", device=1)])
    assert [m.path for m in parts[1]] == ["a", "c"]
    assert [m.path for m in parts[2]] == ["b"]


def test_canonical_is_smallest_path_on_tie():
    part = [member("b.txt", inode=2), member("a.txt", inode=1)]
    assert choose_canonical(part).path == "a.txt"
    # Order of the input does not matter
    assert choose_canonical(list(reversed(part))).path == "a.txt"


def test_canonical_prefers_inode_with_most_members():
    part = [
        member("a.txt", inode=1),
        member("b.txt", inode=2),
        member("c.txt", inode=2),
    ]
    canonical = choose_canonical(part)
    assert canonical.path == "b.txt"
    assert canonical.inode == 2


def test_plan_links_basic():
    groups = group_by_fingerprint([
        member("a.txt", "hello", inode=1),
        member("b.txt", "hello", inode=2),
        member("c.txt", "world", inode=3),
    ])
    plans, already_linked = plan_links(groups)

    assert already_linked == 0
    assert len(plans) == 1
    assert plans[0].fingerprint == "hello"
    assert plans[0].canonical.path == "a.txt"
    assert [d.path for d in plans[0].duplicates] == ["b.txt"]


def test_plan_links_skips_already_linked():
    groups = group_by_fingerprint([
        member("a.txt", inode=1, nlink=2),
        member("b.txt", inode=1, nlink=2),
    ])
    plans, already_linked = plan_links(groups)
    assert plans == []
    assert already_linked == 1


def test_plan_links_partial_group():
    groups = group_by_fingerprint([
        member("a.txt", inode=1, nlink=2),
        member("b.txt", inode=1, nlink=2),
        member("c.txt", inode=7),
    ])
    plans, already_linked = plan_links(groups)
    assert already_linked == 1
    assert [d.path for d in plans[0].duplicates] == ["c.txt"]
    assert plans[0].canonical.path == "a.txt"


def test_plan_links_never_crosses_devices():
    groups = group_by_fingerprint([
        member("d1/a", inode=1, device=1),
        member("d1/b", inode=2, device=1),
        member("d2/a", inode=1, device=2),
        member("d2/c", inode=5, device=2),
        member("d3/only", inode=9, device=3),
    ])
    plans, _ = plan_links(groups)

    assert len(plans) == 2
    for plan in plans:
        for dup in plan.duplicates:
            assert dup.device == plan.canonical.device
    assert [(p.canonical.path, [d.path for d in p.duplicates]) for p in plans] == [
        ("d1/a", ["d1/b"]),
        ("d2/a", ["d2/c"]),
    ]


def test_singletons_need_no_plan():
    plans, already_linked = plan_links(group_by_fingerprint([member("a", "x"), member("b", "y")]))
    assert plans == []
    assert already_linked == 0
