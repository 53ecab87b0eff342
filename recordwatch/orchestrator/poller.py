"""Asyncio scheduler that polls every date of a job and retries failures."""
from __future__ import annotations

import asyncio
import time
from datetime import date, datetime
from typing import Callable, Iterable, Optional

import structlog
from croniter import croniter

from recordwatch.fetch.fetcher import Fetcher
from recordwatch.observability.metrics import MetricsRegistry, record_duration
from recordwatch.observability.tracing import clear_context, set_context, span
from recordwatch.tracking.models import FetchFailure, FetchResult
from recordwatch.tracking.tracker import JobSnapshot, JobTracker

LOGGER = structlog.get_logger(__name__)

PassCallback = Callable[[JobSnapshot], None]
StopCheck = Callable[[], bool]

# Longest wait between checks of an external stop request.
STOP_CHECK_SECONDS = 1.0


class DatePoller:
    """Drives a ``JobTracker`` by fetching each of its dates on a timer.

    Each tick polls the full date range, then re-polls the dates the tracker
    flags for retry.  At most one fetch per date is in flight and at most
    ``max_concurrency`` fetches overall.  ``stop()`` does not cancel in-flight
    fetches; their results are still recorded.

    ``on_progress`` receives a snapshot after recorded results, at most once
    per ``progress_every_seconds``, so status readers see partial results
    while a pass is still running.  ``stop_check`` is consulted between dates
    and during pauses to honour stop requests made from outside the process.
    """

    def __init__(
        self,
        tracker: JobTracker,
        fetcher: Fetcher,
        *,
        metrics: Optional[MetricsRegistry] = None,
        max_concurrency: int = 2,
        on_pass: Optional[PassCallback] = None,
        on_progress: Optional[PassCallback] = None,
        progress_every_seconds: float = 0.0,
        stop_check: Optional[StopCheck] = None,
    ) -> None:
        self._tracker = tracker
        self._fetcher = fetcher
        self._config = tracker.poll_config
        self._metrics = metrics or MetricsRegistry()
        self._max_concurrency = max(1, max_concurrency)
        self._on_pass = on_pass
        self._on_progress = on_progress
        self._progress_every = max(0.0, progress_every_seconds)
        self._last_progress: Optional[float] = None
        self._stop_check = stop_check
        self._wake = asyncio.Event()

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    def stop(self) -> None:
        self._tracker.stop()
        self._wake.set()

    def _honour_stop_request(self) -> None:
        if self._stop_check is not None and self._tracker.is_running and self._stop_check():
            LOGGER.info("stop_requested", job_id=self._tracker.job_id)
            self.stop()

    async def _pause(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            self._honour_stop_request()
            return
        deadline = time.monotonic() + seconds
        while self._tracker.is_running:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            if self._stop_check is not None:
                remaining = min(remaining, STOP_CHECK_SECONDS)
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                self._honour_stop_request()
            else:
                return

    def _seconds_until_next_tick(self) -> float:
        if self._config.cron:
            now = datetime.now().astimezone()
            upcoming = croniter(self._config.cron, now).get_next(datetime)
            return max(0.0, (upcoming - now).total_seconds())
        return self._config.interval_seconds

    async def poll_date(self, day: date) -> None:
        """Fetch one date and record the outcome, absorbing fetcher errors."""
        self._metrics.incr("fetch_attempts")
        try:
            with span(name="poll_date", day=day.isoformat()):
                result: FetchResult = await self._fetcher.fetch(day)
        except Exception as exc:
            LOGGER.warning("fetcher_raised", date=day.isoformat(), error=repr(exc))
            result = FetchFailure(message=f"{exc.__class__.__name__}: {exc}")
        summary = self._tracker.record_result(day, result)
        if summary.failed:
            self._metrics.incr("fetch_failures")
        self._metrics.incr("records_new", summary.new_records)
        self._metrics.incr("records_duplicate", summary.duplicates)
        self._metrics.incr("matches", summary.matches)
        self._publish_progress()

    def _publish_progress(self) -> None:
        if self._on_progress is None:
            return
        now = time.monotonic()
        if self._last_progress is not None and now - self._last_progress < self._progress_every:
            return
        self._last_progress = now
        self._on_progress(self._tracker.snapshot())

    async def _poll_dates(self, days: Iterable[date]) -> None:
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def worker(day: date) -> None:
            async with semaphore:
                self._honour_stop_request()
                if not self._tracker.is_running:
                    return
                await self.poll_date(day)
                await self._pause(self._config.request_spacing_seconds)

        await asyncio.gather(*(worker(day) for day in dict.fromkeys(days)))

    async def poll_pass(self) -> None:
        """Poll every date in the job's range once."""
        self._metrics.incr("passes")
        await self._poll_dates(self._tracker.date_range)

    async def retry_sweep(self) -> int:
        """Re-poll dates pending retry; returns how many were attempted."""
        pending = self._tracker.pending_retry_dates()
        if not pending or not self._tracker.begin_retry_sweep():
            return 0
        self._metrics.incr("retry_sweeps")
        LOGGER.info("retry_sweep_start", dates=[day.isoformat() for day in pending])
        try:
            await self._poll_dates(pending)
        finally:
            self._tracker.end_retry_sweep()
        return len(pending)

    def _notify(self) -> None:
        if self._on_pass is not None:
            self._on_pass(self._tracker.snapshot())

    async def run(self, *, ticks: Optional[int] = None) -> JobSnapshot:
        """Poll until the job is stopped or ``ticks`` ticks have run."""
        set_context(job_id=self._tracker.job_id)
        try:
            with record_duration(self._metrics, "run_duration_ms"):
                tick = 0
                while self._tracker.is_running and (ticks is None or tick < ticks):
                    await self.poll_pass()
                    if self._tracker.is_running and self._tracker.pending_retry_dates():
                        await self._pause(self._config.retry_delay_seconds)
                        if self._tracker.is_running:
                            await self.retry_sweep()
                    tick += 1
                    self._notify()
                    if self._tracker.is_running and (ticks is None or tick < ticks):
                        await self._pause(self._seconds_until_next_tick())
        finally:
            clear_context()
        return self._tracker.snapshot()
