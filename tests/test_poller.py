import asyncio
from datetime import date

from recordwatch.orchestrator.poller import DatePoller
from recordwatch.tracking.dates import expand_date_range
from recordwatch.tracking.models import FetchFailure, FetchSuccess
from recordwatch.tracking.settings import PollIntervalConfig
from recordwatch.tracking.tracker import JobStatus, JobTracker

FAST = PollIntervalConfig(interval_minutes=0.0001, request_spacing_seconds=0, retry_delay_seconds=0)
JAN_1 = date(2024, 1, 1)
JAN_2 = date(2024, 1, 2)


class ScriptedFetcher:
    """Returns queued results per date, then an empty success."""

    def __init__(self, script=None):
        self._script = {day: list(results) for day, results in (script or {}).items()}
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, day):
        self.calls.append(day)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            queued = self._script.get(day)
            if queued:
                result = queued.pop(0)
                if isinstance(result, Exception):
                    raise result
                return result
            return FetchSuccess([])
        finally:
            self.in_flight -= 1


def _tracker(names="Smith"):
    return JobTracker.create(expand_date_range(JAN_1, JAN_2), names, FAST)


def test_failed_dates_are_retried_in_a_sweep():
    tracker = _tracker()
    fetcher = ScriptedFetcher(
        {
            JAN_1: [FetchFailure("timeout"), FetchSuccess([{"name": "John Smith"}])],
            JAN_2: [FetchSuccess([{"name": "Ali Khan"}])],
        }
    )
    poller = DatePoller(tracker, fetcher)

    snapshot = asyncio.run(poller.run(ticks=1))

    assert fetcher.calls.count(JAN_1) == 2
    assert snapshot.total_requests == 3
    assert snapshot.pending_retry_dates == frozenset()
    assert snapshot.retrying_errors is False
    assert len(snapshot.matches_by_date[JAN_1]) == 1
    assert len(snapshot.errors_by_date[JAN_1]) == 1
    assert poller.metrics.get("retry_sweeps") == 1
    assert poller.metrics.get("fetch_failures") == 1
    assert poller.metrics.get("fetch_attempts") == 3
    assert poller.metrics.get("matches") == 1


def test_fetcher_exceptions_become_failures():
    tracker = _tracker()
    fetcher = ScriptedFetcher({JAN_2: [RuntimeError("socket closed"), RuntimeError("socket closed")]})

    snapshot = asyncio.run(DatePoller(tracker, fetcher).run(ticks=1))

    assert snapshot.pending_retry_dates == frozenset({JAN_2})
    messages = [entry.message for entry in snapshot.errors_by_date[JAN_2]]
    assert messages == ["RuntimeError: socket closed", "RuntimeError: socket closed"]
    assert snapshot.status is JobStatus.RUNNING


def test_each_tick_notifies_with_a_snapshot():
    tracker = _tracker(names=None)
    seen = []
    poller = DatePoller(tracker, ScriptedFetcher(), on_pass=seen.append)

    asyncio.run(poller.run(ticks=2))

    assert [snapshot.total_requests for snapshot in seen] == [2, 4]
    assert poller.metrics.get("passes") == 2
    assert poller.metrics.get("retry_sweeps") == 0


def test_stop_ends_an_unbounded_run():
    tracker = _tracker()
    fetcher = ScriptedFetcher()
    holder = {}

    def on_pass(snapshot):
        holder["poller"].stop()

    poller = DatePoller(tracker, fetcher, on_pass=on_pass)
    holder["poller"] = poller

    snapshot = asyncio.run(asyncio.wait_for(poller.run(), timeout=5))

    assert snapshot.status is JobStatus.STOPPED
    assert len(fetcher.calls) == 2


def test_concurrency_is_bounded():
    tracker = JobTracker.create(expand_date_range("2024-01-01", "2024-01-10"), (), FAST)
    fetcher = ScriptedFetcher()

    asyncio.run(DatePoller(tracker, fetcher, max_concurrency=1).run(ticks=1))

    assert fetcher.max_in_flight == 1
    assert len(fetcher.calls) == 10


def test_stopped_job_is_not_polled():
    tracker = _tracker()
    tracker.stop()
    fetcher = ScriptedFetcher()

    snapshot = asyncio.run(DatePoller(tracker, fetcher).run())

    assert fetcher.calls == []
    assert snapshot.total_requests == 0


def test_progress_is_published_while_a_pass_runs():
    tracker = JobTracker.create(expand_date_range("2024-01-01", "2024-01-05"), "Smith", FAST)
    published = []
    seen_at_fetch = []

    class ObservingFetcher(ScriptedFetcher):
        async def fetch(self, day):
            seen_at_fetch.append(len(published))
            return await super().fetch(day)

    poller = DatePoller(tracker, ObservingFetcher(), max_concurrency=1, on_progress=published.append)
    asyncio.run(poller.run(ticks=1))

    assert seen_at_fetch == [0, 1, 2, 3, 4]
    assert [snapshot.total_requests for snapshot in published] == [1, 2, 3, 4, 5]


def test_progress_is_throttled():
    tracker = JobTracker.create(expand_date_range("2024-01-01", "2024-01-05"), (), FAST)
    published = []
    poller = DatePoller(
        tracker,
        ScriptedFetcher(),
        max_concurrency=1,
        on_progress=published.append,
        progress_every_seconds=3600,
    )

    asyncio.run(poller.run(ticks=1))

    assert [snapshot.total_requests for snapshot in published] == [1]


def test_external_stop_request_is_honoured_between_dates():
    tracker = JobTracker.create(expand_date_range("2024-01-01", "2024-01-05"), (), FAST)
    fetcher = ScriptedFetcher()
    poller = DatePoller(tracker, fetcher, max_concurrency=1, stop_check=lambda: len(fetcher.calls) >= 2)

    snapshot = asyncio.run(asyncio.wait_for(poller.run(), timeout=5))

    assert len(fetcher.calls) == 2
    assert snapshot.status is JobStatus.STOPPED


def test_external_stop_request_ends_a_long_pause():
    slow = PollIntervalConfig(interval_minutes=60, request_spacing_seconds=0, retry_delay_seconds=0)
    tracker = JobTracker.create([JAN_1], (), slow)
    requested = []
    poller = DatePoller(tracker, ScriptedFetcher(), on_pass=lambda snapshot: requested.append(True), stop_check=lambda: bool(requested))

    snapshot = asyncio.run(asyncio.wait_for(poller.run(), timeout=5))

    assert snapshot.status is JobStatus.STOPPED
    assert snapshot.total_requests == 1
