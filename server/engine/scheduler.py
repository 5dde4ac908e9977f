"""
Incremental analysis scheduling.

Files are content-hashed (in fixed-size batches with bounded concurrency)
and compared against the previous run. Unchanged files are cache hits and
are not evaluated again. Changed files are scored, sorted and grouped into
priority-tagged batches.

The hash table and result cache are only written from the orchestrating
thread. Hashing threads and the background refresher hand their results
back instead of writing them directly.
"""

import concurrent.futures
import hashlib
import logging
import os
import queue
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Literal, Optional, Set, Tuple

from .types import FileData, Issue

logger = logging.getLogger(__name__)

BatchPriority = Literal["critical", "high", "medium", "low"]

DEFAULT_BATCH_SIZE = 10
DEFAULT_HASH_BATCH_SIZE = 50
DEFAULT_REHASH_INTERVAL = 30.0
MAX_REFRESH_FILES = 10

CRITICAL_NAME_PATTERNS = ("index.", "main.", "app.", "__main__.", "__init__.", "server.")
SOURCE_EXTENSIONS = frozenset({".ts", ".tsx", ".js", ".jsx", ".py"})
DOC_EXTENSIONS = frozenset({".json", ".md", ".yml", ".yaml"})
SMALL_FILE_BYTES = 10_000
LARGE_FILE_BYTES = 100_000

_BATCH_ORDER: Dict[str, int] = {"critical": 0, "high": 1, "medium": 2, "low": 3}

# (mtime_ns, size) of a file on disk
StatSignature = Tuple[int, int]


@dataclass(frozen=True)
class Batch:
    id: int
    files: Tuple[FileData, ...]
    priority: BatchPriority


@dataclass
class SchedulePlan:
    """Output of one planning pass."""
    batches: List[Batch] = field(default_factory=list)
    cache_hits: List[FileData] = field(default_factory=list)
    changed: List[FileData] = field(default_factory=list)
    hashes: Dict[str, str] = field(default_factory=dict)
    estimated_speedup: float = 1.0

    def ordered_files(self) -> List[FileData]:
        return [f for batch in self.batches for f in batch.files]


def _stat_signature(path: str) -> Optional[StatSignature]:
    try:
        st = os.stat(path)
    except OSError:
        return None
    return (st.st_mtime_ns, st.st_size)


def _content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class AnalysisScheduler:
    """Decides which files run and in what order."""

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE,
                 hash_batch_size: int = DEFAULT_HASH_BATCH_SIZE,
                 dependency_counts: Optional[Dict[str, int]] = None):
        self.batch_size = max(1, batch_size)
        self.hash_batch_size = max(1, hash_batch_size)
        self.dependency_counts: Dict[str, int] = dict(dependency_counts or {})
        self.file_hashes: Dict[str, str] = {}
        self.recent_changes: Set[str] = set()
        self._results: Dict[str, Tuple[str, List[Issue]]] = {}
        self._warm: Dict[str, Tuple[StatSignature, str]] = {}
        self._refreshed: "queue.Queue[Tuple[str, Optional[StatSignature], Optional[str]]]" = \
            queue.Queue()
        self._refresh_targets: Tuple[str, ...] = ()
        self._timer: Optional[threading.Timer] = None
        self._refresh_interval = DEFAULT_REHASH_INTERVAL

    # -- hashing ------------------------------------------------------------

    def _hash_one(self, file: FileData) -> Tuple[str, Optional[StatSignature], str]:
        """Hash what will actually be analyzed.

        Loaded content always wins and is never stored in the warm cache,
        which only describes bytes read from disk under a stat signature.
        """
        if file.content:
            return file.file_path, None, _content_hash(file.content.encode("utf-8"))
        signature = _stat_signature(file.file_path)
        if signature is None:
            return file.file_path, None, _content_hash(b"")
        warm = self._warm.get(file.file_path)
        if warm is not None and warm[0] == signature:
            return file.file_path, signature, warm[1]
        with open(file.file_path, "rb") as f:
            data = f.read()
        return file.file_path, signature, _content_hash(data)

    def hash_files(self, files: Iterable[FileData]) -> Dict[str, str]:
        """Hash files batch by batch with at most hash_batch_size in flight."""
        files = list(files)
        hashes: Dict[str, str] = {}
        with concurrent.futures.ThreadPoolExecutor(
                max_workers=min(self.hash_batch_size, 8), thread_name_prefix="hash") as executor:
            for start in range(0, len(files), self.hash_batch_size):
                batch = files[start:start + self.hash_batch_size]
                for file, future in zip(batch, [executor.submit(self._hash_one, f) for f in batch]):
                    try:
                        path, signature, digest = future.result()
                    except OSError as e:
                        logger.warning("Could not hash %s: %s", file.file_path, e)
                        continue
                    hashes[path] = digest
                    if signature is not None:
                        self._warm[path] = (signature, digest)
        return hashes

    # -- priority -----------------------------------------------------------

    def mark_recently_changed(self, paths: Iterable[str]) -> None:
        self.recent_changes.update(paths)
        self._publish_refresh_targets()

    def _publish_refresh_targets(self) -> None:
        # The refresher thread only ever reads this immutable snapshot
        self._refresh_targets = tuple(sorted(self.recent_changes))[:MAX_REFRESH_FILES]

    def is_critical(self, file: FileData) -> bool:
        name = os.path.basename(file.file_path)
        return any(pattern in name for pattern in CRITICAL_NAME_PATTERNS)

    def priority(self, file: FileData) -> int:
        score = 0
        if self.is_critical(file):
            score += 100
        if file.file_path in self.recent_changes:
            score += 80
        score += self.dependency_counts.get(file.file_path, 0) * 10

        ext = os.path.splitext(file.file_path)[1].lower()
        if ext in SOURCE_EXTENSIONS:
            score += 50
        elif ext in DOC_EXTENSIONS:
            score += 20

        size = len(file.content.encode("utf-8")) if file.content else 0
        if size < SMALL_FILE_BYTES:
            score += 30
        elif size > LARGE_FILE_BYTES:
            score -= 20
        return score

    def _batch_priority(self, files: Iterable[FileData]) -> BatchPriority:
        files = list(files)
        has_critical = any(self.is_critical(f) for f in files)
        has_recent = any(f.file_path in self.recent_changes for f in files)
        if has_critical and has_recent:
            return "critical"
        if has_critical or has_recent:
            return "high"
        if any(os.path.splitext(f.file_path)[1].lower() in SOURCE_EXTENSIONS for f in files):
            return "medium"
        return "low"

    # -- planning -----------------------------------------------------------

    def _drain_refreshed(self) -> None:
        """Adopt background rehashes; processed paths leave recent_changes."""
        drained = False
        while True:
            try:
                path, signature, digest = self._refreshed.get_nowait()
            except queue.Empty:
                break
            drained = True
            if signature is not None and digest is not None:
                self._warm[path] = (signature, digest)
            self.recent_changes.discard(path)
        if drained:
            self._publish_refresh_targets()

    def plan(self, files: Iterable[FileData],
             previous_hashes: Optional[Dict[str, str]] = None) -> SchedulePlan:
        """Split files into cache hits and prioritized batches of changed files.

        The global sentinel is never scheduled here; the engine always adds it.
        """
        self._drain_refreshed()
        files = [f for f in files if not f.is_global]
        previous = self.file_hashes if previous_hashes is None else previous_hashes

        hashes = self.hash_files(files)
        plan = SchedulePlan(hashes=hashes)
        for file in files:
            digest = hashes.get(file.file_path)
            if digest is not None and previous.get(file.file_path) == digest:
                plan.cache_hits.append(file)
            else:
                plan.changed.append(file)

        ordered = sorted(plan.changed, key=self.priority, reverse=True)
        batches = []
        for index, start in enumerate(range(0, len(ordered), self.batch_size)):
            chunk = tuple(ordered[start:start + self.batch_size])
            batches.append(Batch(id=index, files=chunk, priority=self._batch_priority(chunk)))
        plan.batches = sorted(batches, key=lambda b: (_BATCH_ORDER[b.priority], b.id))

        plan.estimated_speedup = self.estimate_speedup(len(files), len(plan.cache_hits))
        logger.info("Planned %d files: %d changed in %d batches, %d cache hits",
                    len(files), len(plan.changed), len(plan.batches), len(plan.cache_hits))
        return plan

    def commit(self, plan: SchedulePlan) -> None:
        """Adopt a plan's hashes as the baseline for the next run.

        Files whose hash moved since the previous baseline become recent
        changes. Files seen for the first time do not.
        """
        modified = [f.file_path for f in plan.changed
                    if f.file_path in self.file_hashes and f.file_path in plan.hashes]
        self.file_hashes.update(plan.hashes)
        if modified:
            self.mark_recently_changed(modified)

    @staticmethod
    def estimate_speedup(total: int, cache_hits: int) -> float:
        if total == 0 or cache_hits == total:
            return 100.0
        cache_ratio = cache_hits / total
        incremental_ratio = (total - cache_hits) / total
        return round(1 + cache_ratio * 10 + (5 if incremental_ratio < 0.3 else 0), 2)

    # -- result cache -------------------------------------------------------

    def record_results(self, file_path: str, issues: List[Issue]) -> None:
        digest = self.file_hashes.get(file_path)
        if digest is not None:
            self._results[file_path] = (digest, list(issues))

    def cached_results(self, file_path: str) -> Optional[List[Issue]]:
        """Issues from the last run, if the file hash still matches."""
        entry = self._results.get(file_path)
        if entry is None or self.file_hashes.get(file_path) != entry[0]:
            return None
        return list(entry[1])

    def clear(self) -> None:
        self.file_hashes.clear()
        self._results.clear()
        self._warm.clear()
        self.recent_changes.clear()
        self._publish_refresh_targets()

    # -- background refresh -------------------------------------------------

    @property
    def refreshing(self) -> bool:
        return self._timer is not None

    def _refresh_tick(self) -> None:
        for path in self._refresh_targets:
            signature = _stat_signature(path)
            digest = None
            if signature is not None:
                try:
                    with open(path, "rb") as f:
                        digest = _content_hash(f.read())
                except OSError as e:
                    logger.debug("Background rehash of %s failed: %s", path, e)
                    signature = None
            self._refreshed.put((path, signature, digest))

    def _schedule_refresh(self) -> None:
        self._timer = threading.Timer(self._refresh_interval, self._refresh_loop)
        self._timer.daemon = True
        self._timer.start()

    def _refresh_loop(self) -> None:
        try:
            self._refresh_tick()
        finally:
            if self._timer is not None:
                self._schedule_refresh()

    def start_background_refresh(self, interval: float = DEFAULT_REHASH_INTERVAL) -> None:
        """Periodically pre-hash recently changed files off the main path."""
        self.stop_background_refresh()
        self._refresh_interval = interval
        self._schedule_refresh()

    def stop_background_refresh(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
