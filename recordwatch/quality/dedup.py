"""Deduplication of records fetched repeatedly for the same date."""
from __future__ import annotations

from datetime import date
from typing import Dict, Set

from recordwatch.quality.keys import record_key
from recordwatch.tracking.models import DeathRecord


class Deduplicator:
    """Keeps track of seen record keys per date."""

    def __init__(self) -> None:
        self._seen: Dict[date, Set[str]] = {}

    def key_for(self, record: DeathRecord) -> str:
        """Compute the canonical deduplication key for the record."""
        return record_key(record)

    def is_duplicate(self, day: date, record: DeathRecord) -> bool:
        return self.key_for(record) in self._seen.get(day, ())

    def remember(self, day: date, record: DeathRecord) -> None:
        """Record the key so later fetches of the same record are skipped."""
        self._seen.setdefault(day, set()).add(self.key_for(record))
