from datetime import date

from recordwatch.quality.dedup import Deduplicator
from recordwatch.quality.keys import record_key
from recordwatch.tracking.models import DeathRecord, FetchSuccess
from recordwatch.tracking.tracker import JobTracker


def test_deduplicator_uses_natural_key_per_date():
    dedup = Deduplicator()
    day = date(2024, 1, 1)
    record = DeathRecord(name="John Smith", gender="male", dateOfDeath="2023-12-30", fathersName="Omar")
    assert not dedup.is_duplicate(day, record)
    dedup.remember(day, record)

    regendered = record.model_copy(update={"gender": "unknown"})
    assert dedup.is_duplicate(day, regendered)

    other_mother = record.model_copy(update={"mothers_name": "Sara"})
    assert not dedup.is_duplicate(day, other_mother)
    assert not dedup.is_duplicate(date(2024, 1, 2), record)


def test_case_and_spacing_variants_are_distinct_records():
    original = DeathRecord(name="Ali Khan", fathers_name="Omar")
    variant = DeathRecord(name="ALI  KHAN", fathers_name="omar")
    assert record_key(original) != record_key(variant)

    tracker = JobTracker.create(["2024-01-01"])
    summary = tracker.record_result("2024-01-01", FetchSuccess([original, variant]))

    assert summary.new_records == 2
    assert summary.duplicates == 0
    assert len(tracker.snapshot().records_by_date[date(2024, 1, 1)]) == 2
