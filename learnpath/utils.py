"""
Utility helpers for the Personalized Learning Path core.

Provides:
- Structured logging configuration with timestamps.
- Wall-clock timing with optional performance budgets.
- Id and timestamp helpers shared by the storage layer.
"""

import contextlib
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Generator, Optional

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_logging(
    level: int = logging.INFO,
    fmt: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt: str = "%Y-%m-%dT%H:%M:%S%z",
) -> None:
    """Configure the root logger with timestamped structured output."""
    logging.basicConfig(level=level, format=fmt, datefmt=datefmt, force=True)


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def timed(
    label: str,
    budget_ms: Optional[float] = None,
    log: Optional[logging.Logger] = None,
) -> Generator[None, None, None]:
    """Log elapsed wall-clock time for *label*.

    When *budget_ms* is given and exceeded, a warning is logged instead.
    Nothing is raised either way.
    """
    log = log or logger
    t0 = time.monotonic()
    yield
    elapsed_ms = (time.monotonic() - t0) * 1000
    if budget_ms is not None and elapsed_ms > budget_ms:
        log.warning(
            "%s exceeded performance target of %.0fms (took %.1fms).",
            label, budget_ms, elapsed_ms,
        )
    else:
        log.debug("%s completed in %.1fms.", label, elapsed_ms)


# ---------------------------------------------------------------------------
# Ids & timestamps
# ---------------------------------------------------------------------------


def new_id() -> str:
    """Return a fresh random row id."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
