import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from tqdm import tqdm

from . import config
from .exceptions import (
    CorruptIndexError,
    CrossDeviceLinkError,
    DeduplicatorError,
    FileNotFound,
    IndexSaveError,
    InvalidRootError,
    NotRegularFile,
    ProbeError,
    ReadError,
)
from .fs import LocalFileSystem
from .index.store import FileIndex, path_identity
from .linking.linker import HardLinker
from .linking.planner import group_by_fingerprint, plan_links
from .locking import RunLock
from .models import FileMetadata, FileRecord, GroupMember, LinkAction, LinkPlan, RunReport
from .scanning.filesystem import TreeScanner, is_index_temp_name
from .scanning.hasher import FileHasher
from .scanning.probe import MetadataProber

# (path identity, absolute path, metadata, cached fingerprint or None)
ScanEntry = Tuple[str, Path, FileMetadata, Optional[str]]
# (duplicate, metadata after linking, whether a link was made, error)
LinkResult = Tuple[GroupMember, Optional[FileMetadata], bool, Optional[DeduplicatorError]]


class DeduplicationEngine:
    def __init__(self, root: Path, fs: Optional[LocalFileSystem] = None):
        self.root = Path(root)
        self.fs = fs or LocalFileSystem()
        self.prober = MetadataProber(self.fs)
        self.hasher = FileHasher(self.fs)
        self.scanner = TreeScanner(self.fs)

    def run(self,
            dry_run: bool = False,
            max_workers: int = config.DEFAULT_MAX_WORKERS,
            strict_index: bool = False,
            verify_content: bool = False,
            show_progress: bool = False) -> RunReport:
        """
        Executes one deduplication pass over the tree.
        1. Load the index
        2. Scan & fingerprint (cache hits skip reading content)
        3. Group & plan
        4. Link
        5. Save the index

        Per-file problems end up in the returned report. Raises
        InvalidRootError, LockError, or CorruptIndexError (strict mode only).
        """
        self._check_root()
        self.root = self.root.resolve()
        report = RunReport(root=self.root, dry_run=dry_run)

        with RunLock(self.root):
            # --- Step 1: Index ---
            index = self._load_index(strict_index, report)

            # --- Step 2: Scanning ---
            logging.info(f"Scanning {self.root}...")
            members, seen = self._scan(index, report, max_workers, show_progress)
            self._remove_stale_temp_links(report, dry_run)
            logging.info(
                f"Scan complete. {report.files_scanned} files, "
                f"{report.cache_hits} cached, {report.files_hashed} hashed."
            )

            # --- Step 3: Planning ---
            groups = group_by_fingerprint(members)
            report.groups = sum(1 for g in groups.values() if len(g) > 1)
            plans, report.already_linked = plan_links(groups)
            logging.info(
                f"{report.groups} duplicate groups, "
                f"{sum(len(p.duplicates) for p in plans)} files to link, "
                f"{report.already_linked} already linked."
            )

            # --- Step 4: Linking ---
            if dry_run:
                self._record_planned(plans, report)
            else:
                linker = HardLinker(self.fs, self.prober, verify_content=verify_content)
                self._link_all(plans, linker, index, report, max_workers, show_progress)

            # --- Step 5: Save ---
            index.retain(seen)
            if dry_run:
                logging.info("[DRY RUN] Index not written.")
            elif not index.dirty:
                logging.info("Index unchanged.")
                report.index_saved = True
            else:
                try:
                    index.save()
                    report.index_saved = True
                except IndexSaveError as e:
                    # Links already made stay; the index is only a cache
                    logging.error(str(e))
                    report.index_saved = False
                    report.add_failure(config.INDEX_FILE_NAME, "index", e)

        return report

    def _check_root(self):
        if not self.root.exists():
            raise InvalidRootError(f"{self.root} does not exist")
        if not self.root.is_dir():
            raise InvalidRootError(f"{self.root} is not a directory")

    def _load_index(self, strict_index: bool, report: RunReport) -> FileIndex:
        try:
            return FileIndex.load(self.root, self.fs)
        except CorruptIndexError as e:
            if strict_index:
                raise
            logging.warning(f"Index {self.root / config.INDEX_FILE_NAME} is corrupt ({e}); rebuilding from scratch.")
            report.index_rebuilt = True
            index = FileIndex(self.root, self.fs)
            index.dirty = True
            return index

    # ---------------------- SCANNING ----------------------

    def _scan(self,
              index: FileIndex,
              report: RunReport,
              max_workers: int,
              show_progress: bool) -> Tuple[List[GroupMember], set]:
        """
        Probes every file and resolves its fingerprint, from the index when
        size and mtime are unchanged and by hashing otherwise.

        Returns the group members in scan order and the set of path
        identities whose index records should be kept.
        """
        entries: List[ScanEntry] = []
        seen = set()

        try:
            paths = self.scanner.scan(self.root)
            for path in tqdm(paths, desc="Scanning", unit="file", disable=not show_progress):
                rel = path_identity(self.root, path)
                report.files_scanned += 1
                try:
                    meta = self.prober.probe(path)
                except (FileNotFound, NotRegularFile) as e:
                    logging.warning(f"Skipping {rel}: {e}")
                    report.add_failure(rel, "probe", e)
                    continue
                except ProbeError as e:
                    logging.warning(f"Skipping {rel}: {e}")
                    report.add_failure(rel, "probe", e)
                    seen.add(rel)
                    continue

                seen.add(rel)
                rec = index.lookup(rel)
                if rec is not None and rec.is_fresh(meta):
                    report.cache_hits += 1
                    logging.debug(f"Cache hit: {rel}")
                    if (rec.device, rec.inode) != (meta.device, meta.inode):
                        index.upsert(FileRecord.from_metadata(rel, meta, rec.fingerprint))
                    entries.append((rel, path, meta, rec.fingerprint))
                else:
                    entries.append((rel, path, meta, None))
        except OSError as e:
            raise InvalidRootError(f"Cannot read {self.root}: {e}") from e

        for path, err in self.scanner.errors:
            report.add_failure(path_identity(self.root, path), "scan", err)

        pending = [(rel, path, meta) for rel, path, meta, fp in entries if fp is None]
        hashed = self._hash_pending(pending, report, max_workers, show_progress)

        members: List[GroupMember] = []
        for rel, path, meta, fp in entries:
            if fp is None:
                fp = hashed.get(rel)
                if fp is None:
                    continue
                index.upsert(FileRecord.from_metadata(rel, meta, fp))
            members.append(GroupMember(
                path=rel,
                abs_path=path,
                fingerprint=fp,
                device=meta.device,
                inode=meta.inode,
                size=meta.size,
                nlink=meta.nlink,
                mtime_ns=meta.mtime_ns,
            ))

        return members, seen

    def _fingerprint(self, path: Path, meta: FileMetadata) -> str:
        digest = self.hasher.fingerprint(path)
        after = self.prober.probe(path)
        if (after.inode, after.size, after.mtime_ns) != (meta.inode, meta.size, meta.mtime_ns):
            raise ReadError(f"{path} changed while it was being read")
        return digest

    def _hash_pending(self,
                      pending: List[Tuple[str, Path, FileMetadata]],
                      report: RunReport,
                      max_workers: int,
                      show_progress: bool) -> Dict[str, str]:
        """Fingerprints cache misses, in parallel when max_workers > 1."""
        results: Dict[str, str] = {}
        if not pending:
            return results

        with tqdm(total=len(pending), desc="Hashing", unit="file", disable=not show_progress) as bar:
            if max_workers <= 1:
                for rel, path, meta in pending:
                    try:
                        results[rel] = self._fingerprint(path, meta)
                    except DeduplicatorError as e:
                        logging.warning(f"Skipping {rel}: {e}")
                        report.add_failure(rel, "hash", e)
                    bar.update(1)
            else:
                with ThreadPoolExecutor(max_workers=max_workers) as executor:
                    future_to_rel = {
                        executor.submit(self._fingerprint, path, meta): rel
                        for rel, path, meta in pending
                    }
                    for future in as_completed(future_to_rel):
                        rel = future_to_rel[future]
                        try:
                            results[rel] = future.result()
                        except DeduplicatorError as e:
                            logging.warning(f"Skipping {rel}: {e}")
                            report.add_failure(rel, "hash", e)
                        bar.update(1)

        report.files_hashed = len(results)
        return results

    def _remove_stale_temp_links(self, report: RunReport, dry_run: bool):
        """
        Temp links left by an interrupted run are extra names of a canonical
        file, so only names with another link are removed. The one exception
        is a half-written index at the root.
        """
        for tmp in self.scanner.temp_links:
            rel = path_identity(self.root, tmp)
            try:
                meta = self.prober.probe(tmp)
            except ProbeError as e:
                logging.warning(f"Cannot check leftover temporary file {rel}: {e}")
                report.add_failure(rel, "cleanup", e)
                continue

            index_temp = tmp.parent == self.root and is_index_temp_name(tmp.name)
            if meta.nlink < 2 and not index_temp:
                logging.warning(f"Leaving {rel} alone: named like a temporary link but it is the only copy")
                continue

            if dry_run:
                logging.info(f"[DRY RUN] Would remove leftover temporary file {rel}")
                continue
            try:
                self.fs.remove(tmp)
                report.stale_temp_links_removed += 1
                logging.warning(f"Removed leftover temporary file {rel}")
            except OSError as e:
                logging.warning(f"Failed to remove leftover temporary file {rel}: {e}")
                report.add_failure(rel, "cleanup", e)

    # ---------------------- LINKING ----------------------

    def _record_planned(self, plans: List[LinkPlan], report: RunReport):
        for plan in plans:
            for dup in plan.duplicates:
                logging.info(f"[DRY RUN] Link {dup.path} -> {plan.canonical.path}")
                report.actions.append(LinkAction(
                    path=dup.path,
                    canonical=plan.canonical.path,
                    fingerprint=plan.fingerprint,
                    size=dup.size,
                    status="planned",
                ))

    def _apply_plan(self, plan: LinkPlan, linker: HardLinker) -> List[LinkResult]:
        """Links every duplicate of one plan, one after another."""
        results: List[LinkResult] = []
        for dup in plan.duplicates:
            try:
                new_meta, linked = linker.replace_with_link(plan.canonical, dup)
                results.append((dup, new_meta, linked, None))
            except DeduplicatorError as e:
                results.append((dup, None, False, e))
        return results

    def _link_all(self,
                  plans: List[LinkPlan],
                  linker: HardLinker,
                  index: FileIndex,
                  report: RunReport,
                  max_workers: int,
                  show_progress: bool):
        """
        Applies all plans. Plans never share files, so different plans may
        run in parallel while each plan's replacements stay sequential.
        """
        if not plans:
            logging.info("No files need linking.")
            return

        with tqdm(total=len(plans), desc="Linking", unit="group", disable=not show_progress) as bar:
            if max_workers <= 1:
                for plan in plans:
                    self._record_results(plan, self._apply_plan(plan, linker), index, report)
                    bar.update(1)
            else:
                with ThreadPoolExecutor(max_workers=max_workers) as executor:
                    future_to_plan = {executor.submit(self._apply_plan, plan, linker): plan for plan in plans}
                    for future in as_completed(future_to_plan):
                        plan = future_to_plan[future]
                        self._record_results(plan, future.result(), index, report)
                        bar.update(1)

        logging.info(f"Created {report.links_created} hardlinks.")

    def _record_results(self,
                        plan: LinkPlan,
                        results: List[LinkResult],
                        index: FileIndex,
                        report: RunReport):
        replaced_by_inode: Dict[int, List[GroupMember]] = defaultdict(list)

        for dup, new_meta, linked, err in results:
            action = LinkAction(
                path=dup.path,
                canonical=plan.canonical.path,
                fingerprint=plan.fingerprint,
                size=dup.size,
                status="linked",
            )
            if err is not None:
                if isinstance(err, CrossDeviceLinkError):
                    logging.error(f"Internal error, cross-device link attempted: {err}")
                else:
                    logging.error(f"Failed to link {dup.path}: {err}")
                report.add_failure(dup.path, "link", err)
                action.status = "failed"
                action.message = str(err)
            else:
                # A hardlink takes on the canonical file's mtime and inode
                index.upsert(FileRecord.from_metadata(dup.path, new_meta, plan.fingerprint))
                if linked:
                    report.links_created += 1
                    replaced_by_inode[dup.inode].append(dup)
                else:
                    # Linked to the canonical file by someone else since the scan
                    report.already_linked += 1
                    action.status = "already-linked"
            report.actions.append(action)

        # Space comes back only once every name of the old inode is gone
        for inode, replaced in replaced_by_inode.items():
            if len(replaced) >= replaced[0].nlink:
                report.bytes_reclaimed += replaced[0].size
