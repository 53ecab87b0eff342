"""Per-job counters exported alongside the status snapshot."""
from __future__ import annotations

import contextlib
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator

import orjson
import structlog

LOGGER = structlog.get_logger(__name__)

JOB_COUNTERS = (
    "fetch_attempts",
    "fetch_failures",
    "fetch_retries",
    "records_new",
    "records_duplicate",
    "matches",
    "retry_sweeps",
    "passes",
    "run_duration_ms",
)


class MetricsRegistry:
    """Integer counters for a single polling job.

    Every name in ``JOB_COUNTERS`` is present from the start so exported files
    always carry the same keys, even for counters that never moved.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = dict.fromkeys(JOB_COUNTERS, 0)

    def incr(self, name: str, value: int = 1) -> None:
        if not value:
            return
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def export(self, *, path: Path, job_id: str) -> Path:
        """Write the counters for ``job_id`` as JSON to ``path``."""
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "job_id": job_id,
            "generated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "counters": self.snapshot(),
        }
        path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS))
        LOGGER.info("metrics_exported", path=str(path))
        return path


@contextlib.contextmanager
def record_duration(registry: MetricsRegistry, metric_name: str) -> Iterator[None]:
    """Add the wall time of the block, in milliseconds, to ``metric_name``."""
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        registry.incr(metric_name, elapsed_ms)
        LOGGER.info("run_finished", metric=metric_name, duration_ms=elapsed_ms)
