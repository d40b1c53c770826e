"""
Merge per-owner task outputs from a fan-out dispatch into one report.

A task output looks like ``{ownerNames, results, totalHits, isComplete}``,
optionally wrapped as ``{"parallelResults": {...}}`` the way the workflow's
parallel branches emit it. Anything without a ``results`` list is skipped.
When its ``batchId`` is known the batch is recorded under ``failedBatches``,
otherwise it is simply dropped.

Results are concatenated in arrival order. Entries are NOT deduplicated across
owners: a case reachable through two owners appears twice.
"""
import logging
import threading
import time
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

DEFAULT_TASK_TIMEOUT = 30

ENTITY_FIELDS = ("entityName", "entityType", "dateRange")


def _unwrap(output):
    if isinstance(output, list) and len(output) == 1:
        output = output[0]
    if isinstance(output, dict):
        if isinstance(output.get("json"), dict):
            output = output["json"]
        if isinstance(output.get("parallelResults"), dict):
            output = output["parallelResults"]
    return output


class MergeAggregator:
    """Request-scoped, incremental merge state.

    ``add`` may be called repeatedly as outputs arrive; an output whose
    ``batchId`` has already been consumed is ignored. A batch that reported an
    error can still succeed on a later output. ``start`` marks the moment a
    task begins running and ``expire`` fails every started task that has been
    running for ``task_timeout`` seconds; outputs for expired tasks are rejected.
    """

    def __init__(self, tasks=None, task_timeout=DEFAULT_TASK_TIMEOUT, clock=time.monotonic):
        tasks = tasks or []
        self.task_timeout = task_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._expected = [t["batchId"] for t in tasks if t.get("batchId")]
        self._started = {}
        self._expired = set()
        self._consumed = set()
        self._failed = {}
        self._anonymous_ok = 0
        self._results = []
        self._owners_processed = 0
        self._entity_info = None
        # Every task of one dispatch carries the same entity and date values
        self._dispatch_info = {k: tasks[0].get(k) for k in ENTITY_FIELDS} if tasks else None
        self.duplicates = 0

    def start(self, batch_id):
        with self._lock:
            self._started.setdefault(batch_id, self._clock())

    def add(self, output, batch_id=None) -> bool:
        """Fold one task output in. Returns True if it contributed results."""
        output = _unwrap(output)
        if batch_id is None and isinstance(output, dict):
            batch_id = output.get("batchId") or (output.get("pageData") or {}).get("batchId")

        with self._lock:
            if batch_id is not None:
                if batch_id in self._consumed:
                    self.duplicates += 1
                    logger.debug(f"Ignoring duplicate output for {batch_id}")
                    return False
                if batch_id in self._expired:
                    logger.warning(f"Ignoring late output for {batch_id} ({self._failed[batch_id]})")
                    return False

            results = output.get("results") if isinstance(output, dict) else None
            if not isinstance(results, list):
                reason = "missing results"
                if isinstance(output, dict) and output.get("error"):
                    reason = str(output["error"])
                logger.warning(f"Skipping task output without results (batch={batch_id}): {reason}")
                if batch_id is not None:
                    self._failed[batch_id] = reason
                return False

            if batch_id is not None:
                if self._failed.pop(batch_id, None) is not None:
                    logger.info(f"Batch {batch_id} recovered after an earlier failure")
                self._consumed.add(batch_id)
            else:
                self._anonymous_ok += 1

            self._results.extend(results)
            owners = output.get("ownerNames")
            self._owners_processed += len(owners) if isinstance(owners, list) and owners else 1

            if self._entity_info is None and output.get("entityName") and output.get("entityType"):
                self._entity_info = {k: output.get(k) for k in ENTITY_FIELDS}
            return True

    def fail(self, batch_id, reason):
        with self._lock:
            if batch_id not in self._consumed:
                self._failed.setdefault(batch_id, reason)

    def expire(self, now=None):
        """Fail every started task that has run for ``task_timeout`` seconds or more."""
        now = self._clock() if now is None else now
        expired = []
        with self._lock:
            for batch_id, started in self._started.items():
                if batch_id in self._consumed or batch_id in self._expired:
                    continue
                if now - started >= self.task_timeout:
                    self._expired.add(batch_id)
                    self._failed[batch_id] = f"timed out after {self.task_timeout}s"
                    expired.append(batch_id)
        if expired:
            logger.warning(f"{len(expired)} task(s) timed out: {expired}")
        return expired

    @property
    def pending(self):
        """Expected batches that have neither succeeded nor timed out."""
        return [b for b in self._expected if b not in self._consumed and b not in self._expired]

    @property
    def succeeded(self):
        return len(self._consumed) + self._anonymous_ok

    def merge(self, task_outputs):
        for output in task_outputs or []:
            self.add(output)
        return self.result()

    def result(self):
        with self._lock:
            info = self._entity_info or self._dispatch_info or dict.fromkeys(ENTITY_FIELDS)
            outstanding = [b for b in self._expected if b not in self._consumed and b not in self._failed]
            succeeded = len(self._consumed) + self._anonymous_ok
            merged = {
                "results": list(self._results),
                "totalResults": len(self._results),
                "totalOwnersProcessed": self._owners_processed,
                **info,
                "tasksSucceeded": succeeded,
                "tasksFailed": len(self._failed),
                "failedBatches": dict(self._failed),
                "pendingBatches": outstanding,
                "isComplete": not outstanding,
                "success": succeeded > 0,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        return merged


def merge(task_outputs):
    """One-shot merge of a complete set of task outputs."""
    merged = MergeAggregator().merge(task_outputs)
    logger.info(
        f"Merged {merged['totalResults']} results from {merged['totalOwnersProcessed']} owners "
        f"({merged['tasksFailed']} failed)"
    )
    return merged
