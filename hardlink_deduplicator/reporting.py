import csv
import logging
from pathlib import Path

from .models import RunReport


def format_bytes(n: int) -> str:
    size = float(n)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024 or unit == "TB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024


class ReportGenerator:
    def __init__(self, report: RunReport):
        self.report = report

    def log_summary(self):
        r = self.report
        prefix = "[DRY RUN] " if r.dry_run else ""
        logging.info(f"{prefix}Run summary for {r.root}")
        logging.info(f"  Files scanned:     {r.files_scanned}")
        logging.info(f"  Cache hits:        {r.cache_hits}")
        logging.info(f"  Files hashed:      {r.files_hashed}")
        logging.info(f"  Duplicate groups:  {r.groups}")
        logging.info(f"  Already linked:    {r.already_linked}")
        if r.dry_run:
            planned = sum(1 for a in r.actions if a.status == "planned")
            logging.info(f"  Links planned:     {planned}")
        else:
            logging.info(f"  Links created:     {r.links_created}")
            logging.info(f"  Space reclaimed:   {format_bytes(r.bytes_reclaimed)}")
        if r.stale_temp_links_removed:
            logging.info(f"  Leftover temp files removed: {r.stale_temp_links_removed}")
        if r.index_rebuilt:
            logging.warning("  Index was corrupt and has been rebuilt; every file was re-hashed.")
        if r.failures:
            logging.warning(f"  {len(r.failures)} files could not be processed:")
            for f in r.failures:
                logging.warning(f"    [{f.stage}] {f.path}: {f.message}")

    def write_csv(self, output_csv: Path):
        """
        One row per link action (planned, linked or failed), followed by one
        row per failure that happened before linking.
        """
        headers = ["Path", "Status", "Canonical", "Size", "Fingerprint", "Notes"]
        linked_paths = {a.path for a in self.report.actions}

        with open(output_csv, "w", newline="", encoding="utf-8", errors="surrogateescape") as f:
            writer = csv.writer(f)
            writer.writerow(headers)

            for a in self.report.actions:
                writer.writerow([a.path, a.status, a.canonical, a.size, a.fingerprint, a.message])

            for fail in self.report.failures:
                if fail.path in linked_paths and fail.stage == "link":
                    continue
                writer.writerow([fail.path, f"error:{fail.stage}", "", "", "", fail.message])

        logging.info(f"Report written to {output_csv}")
