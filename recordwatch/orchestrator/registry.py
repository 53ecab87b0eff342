"""In-process registry backing the create / stop / status control surface."""
from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional, Union

import structlog

from recordwatch.tracking.dates import DateLike
from recordwatch.tracking.settings import PollIntervalConfig
from recordwatch.tracking.tracker import JobTracker

LOGGER = structlog.get_logger(__name__)


class JobRegistry:
    """Maps job ids to their trackers."""

    def __init__(self) -> None:
        self._jobs: Dict[str, JobTracker] = {}
        self._lock = threading.Lock()

    def create(
        self,
        date_range: Iterable[DateLike],
        target_names: Union[str, Iterable[str], None] = (),
        poll_config: Optional[PollIntervalConfig] = None,
    ) -> JobTracker:
        """Create and register a job; ``InvalidRangeError`` propagates."""
        tracker = JobTracker.create(date_range, target_names, poll_config)
        with self._lock:
            self._jobs[tracker.job_id] = tracker
        return tracker

    def get(self, job_id: str) -> Optional[JobTracker]:
        with self._lock:
            return self._jobs.get(job_id)

    def status(self, job_id: str) -> Optional[Dict[str, object]]:
        tracker = self.get(job_id)
        if tracker is None:
            return None
        return tracker.snapshot().to_wire()

    def stop(self, job_id: str) -> bool:
        """Stop a job. Unknown or already stopped ids return False."""
        tracker = self.get(job_id)
        if tracker is None:
            LOGGER.info("stop_unknown_job", job_id=job_id)
            return False
        return tracker.stop()

    def remove(self, job_id: str) -> Optional[JobTracker]:
        with self._lock:
            tracker = self._jobs.pop(job_id, None)
        if tracker is not None:
            tracker.stop()
        return tracker

    def job_ids(self) -> List[str]:
        with self._lock:
            return list(self._jobs)
