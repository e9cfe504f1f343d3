"""
Turns scanned files into link plans.

Files are grouped by fingerprint, each group is split by device (hardlinks
never cross devices), and every device partition holding more than one
inode gets a canonical file that the other members will be linked to.
"""
from collections import defaultdict
from typing import Dict, Iterable, List, Tuple

from ..models import GroupMember, LinkPlan


def group_by_fingerprint(members: Iterable[GroupMember]) -> Dict[str, List[GroupMember]]:
    groups: Dict[str, List[GroupMember]] = defaultdict(list)
    for m in members:
        groups[m.fingerprint].append(m)
    return dict(groups)


def partition_by_device(members: Iterable[GroupMember]) -> Dict[int, List[GroupMember]]:
    parts: Dict[int, List[GroupMember]] = defaultdict(list)
    for m in members:
        parts[m.device].append(m)
    return dict(parts)


def choose_canonical(members: List[GroupMember]) -> GroupMember:
    """
    Picks the file every other member will be linked to.

    The inode shared by the most members wins, so the fewest files get
    replaced. Ties go to the inode owning the lexically smallest path. The
    canonical file is the smallest path on the winning inode.

    The choice depends only on paths and inode membership, so an unchanged
    tree always yields the same canonical file.
    """
    by_inode: Dict[int, List[str]] = defaultdict(list)
    for m in members:
        by_inode[m.inode].append(m.path)

    winner = min(by_inode, key=lambda ino: (-len(by_inode[ino]), min(by_inode[ino])))
    canonical_path = min(by_inode[winner])
    return next(m for m in members if m.path == canonical_path)


def plan_links(groups: Dict[str, List[GroupMember]]) -> Tuple[List[LinkPlan], int]:
    """
    Returns the link plans for all groups plus the number of duplicate files
    that already share their canonical inode and need no work.

    Plans come out ordered by (fingerprint, device) so the linking phase
    processes groups in the same order on every run.
    """
    plans: List[LinkPlan] = []
    already_linked = 0

    for fingerprint in sorted(groups):
        members = groups[fingerprint]
        if len(members) < 2:
            continue

        for device, part in sorted(partition_by_device(members).items()):
            if len(part) < 2:
                continue

            canonical = choose_canonical(part)
            duplicates = []
            for m in sorted(part, key=lambda m: m.path):
                if m.path == canonical.path:
                    continue
                if m.inode == canonical.inode:
                    already_linked += 1
                else:
                    duplicates.append(m)

            if duplicates:
                plans.append(LinkPlan(fingerprint=fingerprint, canonical=canonical, duplicates=duplicates))

    return plans, already_linked
