"""Prometheus metrics for the upload queue."""

from prometheus_client import Counter, Gauge

# Enqueue metrics
ITEMS_ENQUEUED = Counter(
    "repobatch_items_enqueued_total",
    "Total number of items accepted for upload",
    ["mode"],  # queued, memory, direct
)

QUEUE_SIZE = Gauge(
    "repobatch_queue_size",
    "Number of items waiting in the shared queue at last observation",
)

# Commit metrics
BATCHES_COMMITTED = Counter(
    "repobatch_batches_committed_total",
    "Total number of batch commits pushed to the repository",
)

FILES_COMMITTED = Counter(
    "repobatch_files_committed_total",
    "Total number of files committed in batches",
)

REF_CONFLICTS = Counter(
    "repobatch_ref_conflicts_total",
    "Total number of rejected fast-forward ref updates",
)

BATCH_FAILURES = Counter(
    "repobatch_batch_failures_total",
    "Total number of batches that failed after retries",
)

# Processor metrics
PROCESSOR_RUNS = Counter(
    "repobatch_processor_runs_total",
    "Queue processor invocations by outcome",
    ["outcome"],  # disabled, idle, not_ready, locked, empty, committed, lock_expired, failed
)
