"""Record and fetch-result types exchanged with the record source."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class InvalidRangeError(ValueError):
    """Raised when a job is created with an empty or unordered date range."""


class DeathRecord(BaseModel):
    """A single registry record as returned by the record source."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str = ""
    gender: str = ""
    date_of_death: str = Field(default="", alias="dateOfDeath")
    fathers_name: str = Field(default="", alias="fathersName")
    mothers_name: str = Field(default="", alias="mothersName")

    @field_validator("name", "gender", "date_of_death", "fathers_name", "mothers_name", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> str:
        if value is None:
            return ""
        if isinstance(value, (int, float)):
            return str(value)
        return value  # type: ignore[return-value]

    @property
    def natural_key(self) -> Tuple[str, str, str, str]:
        return (self.name, self.date_of_death, self.fathers_name, self.mothers_name)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


@dataclass(frozen=True)
class FetchSuccess:
    """Records returned by one successful fetch for a date."""

    records: Sequence[Union[DeathRecord, dict]] = ()


@dataclass(frozen=True)
class FetchFailure:
    """A fetch for a date that did not produce records."""

    message: str


FetchResult = Union[FetchSuccess, FetchFailure]


@dataclass(frozen=True)
class ErrorEntry:
    day: date
    message: str
    timestamp: datetime

    def to_wire(self) -> dict:
        return {
            "date": self.day.isoformat(),
            "error": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ResultSummary:
    """What a single ``record_result`` call changed."""

    new_records: int = 0
    duplicates: int = 0
    matches: int = 0
    failed: bool = False


def coerce_record(raw: Union[DeathRecord, dict]) -> DeathRecord:
    """Accept either a parsed record or a raw mapping from the source."""
    if isinstance(raw, DeathRecord):
        return raw
    return DeathRecord.model_validate(raw)


def optional_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
