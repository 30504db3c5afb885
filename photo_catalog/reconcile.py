import logging
import time
from typing import Dict, List

from . import config
from .database.ops import CatalogOperations, OwnerDirectory
from .models import Owner, Record, ReconcileResult, ScanCandidate
from .scanning.scanner import DirectoryScanner
from .storage import FileStore


class CatalogReconciler:
    """
    Brings the catalog in line with what is on disk, one owner at a time.

    - Files with no record get one (inserted in batches).
    - Records whose file is gone are deleted.
    - Everything else is left alone: existing records are never rewritten.

    The insert and delete phases commit separately and are both attempted
    even if the other fails, so a partial run can simply be repeated.
    """
    def __init__(self,
                 catalog: CatalogOperations,
                 owners: OwnerDirectory,
                 scanner: DirectoryScanner,
                 store: FileStore,
                 id_generator,
                 batch_size: int = config.INSERT_BATCH_SIZE):
        self.catalog = catalog
        self.owners = owners
        self.scanner = scanner
        self.store = store
        self.ids = id_generator
        self.batch_size = batch_size

    def reconcile_all(self) -> List[ReconcileResult]:
        results = []
        for owner in self.owners.all_owners():
            results.append(self.reconcile_owner(owner))
        return results

    def reconcile_owner(self, owner: Owner) -> ReconcileResult:
        logging.info(f"Scanning for owner {owner.login}")
        t0 = time.perf_counter()
        result = ReconcileResult(owner_login=owner.login)

        found: Dict[str, ScanCandidate] = {c.full_name: c for c in self.scanner.scan(owner)}
        result.scanned = len(found)
        logging.info(f"Scanned {len(found)} files for owner {owner.login}")

        existing: Dict[str, Record] = {r.full_name: r for r in self.catalog.records_for_owner(owner.id)}

        # --- Phase 1: Insert ---
        new = [c for name, c in found.items() if name not in existing]
        try:
            self._insert(new, result)
            if new:
                logging.info(f"Added {len(new)} new records for owner {owner.login}")
        except Exception as e:
            logging.exception(f"Insert phase failed for owner {owner.login}")
            result.errors.append(f"insert: {e}")

        # --- Phase 2: Delete ---
        # Checked against the disk, not the scan, so a missed file is never dropped
        try:
            orphans = [r for r in existing.values() if not self.store.exists(r.store_path(owner))]
            if orphans:
                result.deleted = self.catalog.delete_records(r.id for r in orphans)
                logging.info(f"Removed {len(orphans)} non-existent records for owner {owner.login}")
        except Exception as e:
            logging.exception(f"Delete phase failed for owner {owner.login}")
            result.errors.append(f"delete: {e}")

        logging.debug(f"Reconciled {owner.login} in {time.perf_counter() - t0:.2f}s")
        return result

    def _insert(self, candidates: List[ScanCandidate], result: ReconcileResult):
        # Count per batch so a later failure still reports what did land
        for start in range(0, len(candidates), self.batch_size):
            chunk = candidates[start:start + self.batch_size]
            result.inserted += self.catalog.insert_records(c.to_record(self.ids.next_id()) for c in chunk)
