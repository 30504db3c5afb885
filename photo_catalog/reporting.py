import csv
import logging
from datetime import datetime
from pathlib import Path

from .database.ops import CatalogOperations
from .metadata.timestamps import TimestampResolver
from .models import Owner, join_full_name
from .scanning.scanner import DirectoryScanner

HEADERS = [
    "Full Name",
    "Status",
    "Timestamp Source",
    "Inferred Creation",
    "Cataloged Creation",
    "Notes",
]


def _fmt(millis) -> str:
    if not millis:
        return ""
    return datetime.fromtimestamp(millis / 1000).isoformat(timespec="seconds")


class TimestampReport:
    """
    Per-owner CSV showing how each file's creation time would be inferred
    today and how that compares with what the catalog holds.
    """
    def __init__(self, catalog: CatalogOperations, scanner: DirectoryScanner, resolver: TimestampResolver):
        self.catalog = catalog
        self.scanner = scanner
        self.resolver = resolver

    def generate(self, owner: Owner, output_csv: Path) -> int:
        logging.info(f"Generating timestamp report for {owner.login} -> {output_csv}")
        cataloged = {r.full_name: r for r in self.catalog.records_for_owner(owner.id)}
        seen = set()
        rows = 0

        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(HEADERS)

            for path, folder in self.scanner.iter_media_files(owner):
                full_name = join_full_name(folder, path.name)
                seen.add(full_name)
                source, inferred = self.resolver.explain(path)
                record = cataloged.get(full_name)

                if record is None:
                    status, stored, notes = "Not In Catalog", None, "Pending scan"
                else:
                    status, stored = "Cataloged", record.created_ms
                    notes = "" if record.created_ms == inferred else "Catalog differs from inference"

                writer.writerow([full_name, status, source, _fmt(inferred), _fmt(stored), notes])
                rows += 1

            # Records whose file disappeared
            for full_name, record in sorted(cataloged.items()):
                if full_name not in seen:
                    writer.writerow([full_name, "Missing On Disk", "", "", _fmt(record.created_ms),
                                     "Removed at next scan"])
                    rows += 1

        logging.info(f"Report complete. {rows} rows.")
        return rows
