import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set, Tuple

from tqdm import tqdm

from .. import config
from ..metadata.timestamps import TimestampResolver
from ..models import Owner, Resolution, ResolutionOutcome, ScanCandidate
from ..storage import FileStore


@dataclass
class _Job:
    path: Path
    folder: Optional[str]
    # Set by the worker thread once the task actually starts running
    started: Optional[float] = None

    def expired(self, now: float, timeout: float) -> bool:
        return self.started is not None and now - self.started > timeout


class DirectoryScanner:
    def __init__(self,
                 store: FileStore,
                 resolver: TimestampResolver,
                 max_workers: int = config.SCAN_WORKERS,
                 timeout: float = config.RESOLVE_TIMEOUT_SECONDS,
                 show_progress: bool = False,
                 poll_interval: float = config.SCAN_POLL_SECONDS,
                 max_abandoned: int = config.SCAN_MAX_ABANDONED):
        """
        Args:
            max_workers: Size of the worker pool running timestamp inference.
            timeout: Seconds a single file may spend in inference before it is
                     abandoned and given a fallback timestamp.
            max_abandoned: Hung threads tolerated before queued files are
                     given up on instead of moved to a fresh pool.
        """
        self.store = store
        self.resolver = resolver
        self.max_workers = max(1, max_workers)
        self.timeout = timeout
        self.show_progress = show_progress
        self.poll_interval = min(poll_interval, timeout)
        self.max_abandoned = max_abandoned

    def iter_media_files(self, owner: Owner) -> Iterator[Tuple[Path, Optional[str]]]:
        """
        Yields (path, folder) for every catalogable file of an owner.
        folder is None for files directly under the owner root.
        """
        for path, depth in self.store.enumerate(owner.login, config.SCAN_MAX_DEPTH):
            if path.suffix.lower() == config.SIDECAR_EXT:
                continue
            yield path, (path.parent.name if depth == 2 else None)

    def scan(self, owner: Owner) -> List[ScanCandidate]:
        """
        Returns one ScanCandidate per eligible file under the owner's root.
        A file whose inference fails or times out still gets a candidate,
        stamped by the resolver's fallback.
        """
        if not self.store.exists(owner.login):
            logging.info(f"Creating missing folder for owner {owner.login}")
            self.store.make_dirs(owner.login)
            return []

        jobs = [_Job(path, folder) for path, folder in self.iter_media_files(owner)]
        if not jobs:
            logging.info(f"Finished scanning for {owner.login}: no files")
            return []

        outcomes = self._run_jobs(jobs)

        by_path = {job.path: job for job in jobs}
        candidates = []
        timed_out = 0
        for outcome in outcomes:
            job = by_path[outcome.path]
            if outcome.status is Resolution.RESOLVED and outcome.value is not None:
                created = outcome.value
            else:
                if outcome.status is Resolution.TIMED_OUT:
                    timed_out += 1
                created = self.resolver.fallback(job.path)
            candidates.append(ScanCandidate(
                owner_id=owner.id,
                name=job.path.name,
                folder=job.folder,
                created_ms=created,
                size_bytes=self._size_of(job.path),
            ))

        if timed_out:
            logging.warning(f"{timed_out} files timed out while scanning {owner.login}")
        logging.info(f"Finished scanning for {owner.login}: {len(candidates)} files")
        return candidates

    # --- Fan-out ---

    def _run_jobs(self, jobs: List[_Job]) -> List[ResolutionOutcome]:
        """
        Runs inference for every job on a bounded pool and waits until each
        one has either finished or timed out. Order of the result is arbitrary.

        A timed-out task keeps its thread until it returns. When every worker
        of the current pool is held that way, the files still queued move to
        a fresh pool, up to max_abandoned hung threads in total.
        """
        pools: List[ThreadPoolExecutor] = []
        outcomes: List[ResolutionOutcome] = []
        progress = tqdm(total=len(jobs), desc="Scanning", disable=not self.show_progress)
        try:
            pool = self._new_pool(pools)
            futures: Dict[Future, _Job] = {
                pool.submit(self._infer_job, job): job for job in jobs
            }
            pending: Set[Future] = set(futures)
            hung_here: Set[Future] = set()
            hung_total: Set[Future] = set()

            while pending:
                done, pending = wait(pending, timeout=self.poll_interval,
                                     return_when=FIRST_COMPLETED)
                for future in done:
                    outcomes.append(self._outcome_of(futures[future], future))
                progress.update(len(done))

                now = time.monotonic()
                expired = {f for f in pending if futures[f].expired(now, self.timeout)}
                for future in expired:
                    logging.warning(f"Time out: {futures[future].path}")
                    outcomes.append(ResolutionOutcome(futures[future].path, Resolution.TIMED_OUT))
                pending -= expired
                hung_here |= expired
                hung_total |= expired
                progress.update(len(expired))

                hung_here = {f for f in hung_here if not f.done()}
                if not pending or len(hung_here) < self.max_workers:
                    continue

                # Every worker of this pool is hung: queued files can never start here
                hung_total = {f for f in hung_total if not f.done()}
                if len(hung_total) < self.max_abandoned:
                    pool.shutdown(wait=False)
                    pool = self._new_pool(pools)
                    pending = self._requeue(pending, futures, pool)
                    hung_here = set()
                    continue

                logging.error(f"{len(hung_total)} scan threads are hung; "
                              f"skipping inference for {len(pending)} files")
                for future in pending:
                    future.cancel()
                    outcomes.append(ResolutionOutcome(futures[future].path, Resolution.TIMED_OUT))
                progress.update(len(pending))
                pending = set()
        finally:
            progress.close()
            # Do not wait for abandoned tasks; they finish (or not) on their own
            for p in pools:
                p.shutdown(wait=False, cancel_futures=True)
        return outcomes

    def _new_pool(self, pools: List[ThreadPoolExecutor]) -> ThreadPoolExecutor:
        pool = ThreadPoolExecutor(max_workers=self.max_workers,
                                  thread_name_prefix=f"photo-scan-{len(pools)}")
        pools.append(pool)
        return pool

    def _requeue(self, pending: Set[Future], futures: Dict[Future, _Job],
                 pool: ThreadPoolExecutor) -> Set[Future]:
        """Moves not-yet-started jobs onto pool. Jobs already running stay put."""
        kept = set()
        moved = 0
        for future in pending:
            if future.cancel():
                job = futures.pop(future)
                replacement = pool.submit(self._infer_job, job)
                futures[replacement] = job
                kept.add(replacement)
                moved += 1
            else:
                kept.add(future)
        logging.warning(f"All {self.max_workers} scan workers are hung; "
                        f"moved {moved} queued files to a new pool")
        return kept

    def _infer_job(self, job: _Job) -> Optional[int]:
        job.started = time.monotonic()
        return self.resolver.infer(job.path)

    def _outcome_of(self, job: _Job, future: Future) -> ResolutionOutcome:
        try:
            value = future.result()
        except Exception as e:
            # infer() does not raise; this only guards against a broken resolver
            logging.error(f"Failed to scan {job.path}: {e}")
            return ResolutionOutcome(job.path, Resolution.UNRESOLVED)
        if value is None:
            return ResolutionOutcome(job.path, Resolution.UNRESOLVED)
        return ResolutionOutcome(job.path, Resolution.RESOLVED, value)

    def _size_of(self, path: Path) -> int:
        try:
            return path.stat().st_size
        except OSError:
            return 0
