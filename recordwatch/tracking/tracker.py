"""State machine for one date-ranged polling job.

The tracker owns every piece of mutable job state behind a single lock.  The
scheduler hands it one fetch result per date attempt via ``record_result`` and
status readers take immutable ``snapshot()`` copies, so a reader never sees a
date whose records were appended but whose matches were not yet recomputed.

The tracker performs no retries and no scheduling of its own.  It only keeps
track of which dates are eligible for a retry sweep.
"""
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple, Union

import structlog
from pydantic import ValidationError

from recordwatch.matching.matcher import WIRE_FIELD_NAMES, FieldMatch, match_targets
from recordwatch.quality.dedup import Deduplicator
from recordwatch.tracking.dates import DateLike, ordered_range, parse_day
from recordwatch.tracking.models import (
    DeathRecord,
    ErrorEntry,
    FetchFailure,
    FetchResult,
    FetchSuccess,
    ResultSummary,
    coerce_record,
    optional_iso,
)
from recordwatch.tracking.settings import PollIntervalConfig

LOGGER = structlog.get_logger(__name__)


class JobStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class MatchEntry:
    """A record on a date matched by one of the job's target names."""

    record: DeathRecord
    found: FieldMatch

    def to_wire(self, day: date) -> dict:
        payload = self.record.to_wire()
        payload.update(
            {
                "date": day.isoformat(),
                "matchedName": self.found.target,
                "matchedField": WIRE_FIELD_NAMES[self.found.field],
                "matchKind": self.found.kind.value,
                "matchedPart": self.found.matched_part,
                "highlights": [[span.start, span.end] for span in self.found.spans],
            }
        )
        if self.found.score is not None:
            payload["matchScore"] = self.found.score
        return payload


@dataclass(frozen=True)
class JobSnapshot:
    """Read-only copy of a job's state at one instant."""

    job_id: str
    status: JobStatus
    date_range: Tuple[date, ...]
    target_names: Tuple[str, ...]
    poll_config: PollIntervalConfig
    start_time: datetime
    last_update_time: Optional[datetime]
    total_requests: int
    records_by_date: Dict[date, Tuple[DeathRecord, ...]]
    matches_by_date: Dict[date, Tuple[MatchEntry, ...]]
    errors_by_date: Dict[date, Tuple[ErrorEntry, ...]]
    pending_retry_dates: FrozenSet[date]
    retrying_errors: bool

    def to_wire(self) -> dict:
        """Serialise using the field names expected by status API clients."""
        found_dates = [
            {
                "date": day.isoformat(),
                "records": [entry.to_wire(day) for entry in self.matches_by_date[day]],
                "totalRecordsOnDate": len(self.records_by_date.get(day, ())),
            }
            for day in sorted(self.matches_by_date)
        ]
        all_records = [
            {**record.to_wire(), "date": day.isoformat()}
            for day in sorted(self.records_by_date)
            for record in self.records_by_date[day]
        ]
        errors = sorted(
            (entry for day in sorted(self.errors_by_date) for entry in self.errors_by_date[day]),
            key=lambda entry: entry.timestamp,
        )
        return {
            "jobId": self.job_id,
            "status": self.status.value,
            "searchNames": list(self.target_names),
            "startTime": self.start_time.isoformat(),
            "lastUpdate": optional_iso(self.last_update_time),
            "totalRequests": self.total_requests,
            "foundDates": found_dates,
            "allRecords": all_records,
            "errors": [entry.to_wire() for entry in errors],
            "errorDates": [day.isoformat() for day in sorted(self.pending_retry_dates)],
            "retryingErrors": self.retrying_errors,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_target_names(names: Union[str, Iterable[str], None]) -> Tuple[str, ...]:
    """Collapse a single name or a list of names into an ordered tuple.

    Blank entries are dropped and repeats collapsed; an empty result means the
    job collects every record without matching.
    """
    if names is None:
        return ()
    if isinstance(names, str):
        names = [names]
    seen: List[str] = []
    for name in names:
        cleaned = str(name).strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return tuple(seen)


class JobTracker:
    """Tracks records, matches and per-date errors for one polling job."""

    def __init__(
        self,
        *,
        job_id: str,
        date_range: Sequence[date],
        target_names: Tuple[str, ...],
        poll_config: PollIntervalConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._lock = threading.RLock()
        self._clock = clock
        self.job_id = job_id
        self.date_range: Tuple[date, ...] = tuple(date_range)
        self.target_names = target_names
        self.poll_config = poll_config
        self.start_time = clock()
        self._status = JobStatus.RUNNING
        self._last_update: Optional[datetime] = None
        self._total_requests = 0
        self._records: Dict[date, List[DeathRecord]] = {}
        self._matches: Dict[date, List[MatchEntry]] = {}
        self._errors: Dict[date, List[ErrorEntry]] = {}
        self._pending: Set[date] = set()
        self._retrying = False
        self._dedup = Deduplicator()

    @classmethod
    def create(
        cls,
        date_range: Iterable[DateLike],
        target_names: Union[str, Iterable[str], None] = (),
        poll_config: Optional[PollIntervalConfig] = None,
        *,
        job_id: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> "JobTracker":
        """Validate inputs and start a job in the running state.

        Raises ``InvalidRangeError`` for an empty or non-chronological range.
        """
        days = ordered_range(date_range)
        tracker = cls(
            job_id=job_id or uuid.uuid4().hex,
            date_range=days,
            target_names=coerce_target_names(target_names),
            poll_config=poll_config or PollIntervalConfig(),
            clock=clock,
        )
        LOGGER.info(
            "job_created",
            job_id=tracker.job_id,
            first_date=days[0].isoformat(),
            last_date=days[-1].isoformat(),
            dates=len(days),
            target_names=list(tracker.target_names),
        )
        return tracker

    @property
    def status(self) -> JobStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._status is JobStatus.RUNNING

    @property
    def retrying_errors(self) -> bool:
        return self._retrying

    def pending_retry_dates(self) -> Tuple[date, ...]:
        """Dates currently eligible for a retry sweep, in calendar order."""
        with self._lock:
            return tuple(sorted(self._pending))

    def record_result(self, day: DateLike, result: FetchResult) -> ResultSummary:
        """Fold one fetch attempt for ``day`` into the job state.

        Never raises for fetch failures: they are logged per date and the date
        is queued for retry unless it already holds confirmed records.
        """
        day = parse_day(day)
        with self._lock:
            self._total_requests += 1
            self._last_update = self._clock()
            if self._status is JobStatus.STOPPED:
                LOGGER.debug("result_after_stop", job_id=self.job_id, date=day.isoformat())
            if isinstance(result, FetchFailure):
                return self._record_failure(day, result)
            return self._record_success(day, result)

    def _record_failure(self, day: date, failure: FetchFailure) -> ResultSummary:
        entry = ErrorEntry(day=day, message=failure.message, timestamp=self._last_update)
        self._errors.setdefault(day, []).append(entry)
        if not self._records.get(day):
            self._pending.add(day)
        LOGGER.warning(
            "fetch_failed",
            job_id=self.job_id,
            date=day.isoformat(),
            error=failure.message,
            pending_retry=day in self._pending,
        )
        return ResultSummary(failed=True)

    def _record_success(self, day: date, success: FetchSuccess) -> ResultSummary:
        bucket = self._records.setdefault(day, [])
        new_records = 0
        duplicates = 0
        for raw in success.records:
            try:
                record = coerce_record(raw)
            except ValidationError as exc:
                LOGGER.warning("record_invalid", job_id=self.job_id, date=day.isoformat(), error=str(exc))
                continue
            if self._dedup.is_duplicate(day, record):
                duplicates += 1
                continue
            self._dedup.remember(day, record)
            bucket.append(record)
            new_records += 1
        if bucket:
            self._pending.discard(day)
        matches = self._recompute_matches(day) if self.target_names else 0
        LOGGER.info(
            "fetch_recorded",
            job_id=self.job_id,
            date=day.isoformat(),
            new_records=new_records,
            duplicates=duplicates,
            matches=matches,
        )
        return ResultSummary(new_records=new_records, duplicates=duplicates, matches=matches)

    def _recompute_matches(self, day: date) -> int:
        entries = [
            MatchEntry(record=record, found=found)
            for record in self._records.get(day, ())
            for found in match_targets(record, self.target_names)
        ]
        if entries:
            self._matches[day] = entries
        else:
            self._matches.pop(day, None)
        return len(entries)

    def begin_retry_sweep(self) -> bool:
        """Mark a retry sweep as in progress; returns False if one already is."""
        with self._lock:
            if self._retrying:
                return False
            self._retrying = True
            return True

    def end_retry_sweep(self) -> bool:
        with self._lock:
            if not self._retrying:
                return False
            self._retrying = False
            return True

    def stop(self) -> bool:
        """Stop the job; returns False when it was already stopped."""
        with self._lock:
            if self._status is JobStatus.STOPPED:
                return False
            self._status = JobStatus.STOPPED
        LOGGER.info("job_stopped", job_id=self.job_id, total_requests=self._total_requests)
        return True

    def snapshot(self) -> JobSnapshot:
        """Return a copy of the job state that later updates cannot affect."""
        with self._lock:
            return JobSnapshot(
                job_id=self.job_id,
                status=self._status,
                date_range=self.date_range,
                target_names=self.target_names,
                poll_config=self.poll_config,
                start_time=self.start_time,
                last_update_time=self._last_update,
                total_requests=self._total_requests,
                records_by_date={day: tuple(items) for day, items in self._records.items()},
                matches_by_date={day: tuple(items) for day, items in self._matches.items()},
                errors_by_date={day: tuple(items) for day, items in self._errors.items()},
                pending_retry_dates=frozenset(self._pending),
                retrying_errors=self._retrying,
            )
