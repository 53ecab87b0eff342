"""Validated polling configuration for a job."""
from __future__ import annotations

from typing import Dict, Optional

from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field, field_validator


class PollIntervalConfig(BaseModel):
    """How often the scheduler polls each date and retries failures."""

    model_config = ConfigDict(frozen=True)

    interval_minutes: float = Field(default=60, gt=0)
    request_spacing_seconds: float = Field(default=1.0, ge=0)
    retry_delay_seconds: float = Field(default=30.0, ge=0)
    cron: Optional[str] = None

    @field_validator("cron", mode="before")
    @classmethod
    def _check_cron(cls, value: Optional[str]) -> Optional[str]:
        if value in (None, ""):
            return None
        if not croniter.is_valid(str(value)):
            raise ValueError(f"Invalid cron expression: {value}")
        return str(value)

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60

    @classmethod
    def from_settings(cls, settings: Dict[str, object], **overrides: object) -> "PollIntervalConfig":
        payload = dict(settings.get("poll", {}))
        payload.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**payload)
