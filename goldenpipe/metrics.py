from collections import Counter
from threading import Lock


BUILD_COUNTERS = (
    "builds_requested_total",
    "builds_accepted_total",
    "builds_rejected_total",
    "provisioning_failures_total",
    "rollbacks_total",
    "cleanup_failures_total",
    "metadata_write_failures_total",
    "images_deleted_total",
)


class BuildMetrics:
    """Process-local operation counters, reported next to the cluster aggregates."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: Counter[str] = Counter({key: 0 for key in BUILD_COUNTERS})

    def inc(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[key] += amount

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def reset(self) -> None:
        with self._lock:
            self._counters = Counter({key: 0 for key in BUILD_COUNTERS})


metrics = BuildMetrics()
