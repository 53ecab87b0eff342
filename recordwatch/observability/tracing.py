"""Context binding and timing spans for poll passes and fetches."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

LOGGER = structlog.get_logger("recordwatch.trace")


def set_context(*, job_id: str) -> None:
    bind_contextvars(job_id=job_id)


def clear_context() -> None:
    unbind_contextvars("job_id")


@contextlib.contextmanager
def span(*, name: str, day: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        LOGGER.debug("trace_span", span=name, date=day, elapsed_ms=elapsed_ms)


def log_retry(attempt: int, *, url: str, reason: str) -> None:
    LOGGER.warning("fetch_retry", attempt=attempt, url=url, reason=reason)


def log_fetch_result(*, url: str, status: int, bytes_read: int, elapsed_ms: int) -> None:
    LOGGER.info(
        "fetch_result",
        url=url,
        status=status,
        bytes=bytes_read,
        elapsed_ms=elapsed_ms,
    )
