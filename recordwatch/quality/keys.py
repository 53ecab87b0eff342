"""Deterministic key builders for record deduplication."""
from __future__ import annotations

import hashlib

from recordwatch.tracking.models import DeathRecord

# Unit separator; cannot appear in registry text fields.
_FIELD_SEP = "\x1f"


def record_key(record: DeathRecord) -> str:
    """Hash of the natural key: name, date of death and both parents' names.

    Parts are compared exactly as received, so records differing only in case
    or spacing are kept as distinct records.
    """
    payload = _FIELD_SEP.join(record.natural_key)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()
