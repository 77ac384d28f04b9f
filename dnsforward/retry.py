"""Retrying of listener binding."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BindRetryConfig:
    """Configuration of the listener binding retries."""

    interval: float = 0.0
    """The time to wait after a failure, in seconds."""

    count: int = 0
    """The maximum number of retries after the first attempt."""

    enabled: bool = False
    """Whether binding is retried."""

    def __post_init__(self) -> None:
        if self.enabled and self.interval < 0:
            raise ValueError(f"negative bind retry interval: {self.interval}")


def bind_with_retry(bind: Callable[[], T], count: int = 0, interval: float = 0.0) -> T:
    """Call bind until it succeeds or count retries are spent.

    Sleeps interval seconds between attempts and returns bind's result.
    If every attempt fails, the error of the first one is raised.
    """
    try:
        return bind()
    except Exception as exc:  # noqa: BLE001
        first_err = exc
        logger.warning("binding attempt=1: %s", exc)

    for attempt in range(1, count + 1):
        time.sleep(interval)
        try:
            return bind()
        except Exception as exc:  # noqa: BLE001
            logger.warning("binding attempt=%d: %s", attempt + 1, exc)

    raise first_err