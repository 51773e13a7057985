from __future__ import annotations

from dataclasses import dataclass, field
import threading
import time
from typing import Callable, TypeVar

from .log import get_logger
from .models import MigrationError

logger = get_logger(__name__)

T = TypeVar("T")


class WaitTimeoutError(MigrationError):
    """Raised when a polled condition does not hold before the deadline."""


class WaitCancelledError(MigrationError):
    """Raised when the cancel event is set while waiting."""


@dataclass
class PollingWait:
    """Fixed-interval poll loop that sleeps on an event so it can be cancelled.

    ``timeout_seconds`` of ``None`` waits indefinitely. A progress message is
    logged every ``announce_every`` unsuccessful polls.
    """

    interval_seconds: float = 5.0
    timeout_seconds: float | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    announce_every: int = 6
    clock: Callable[[], float] = time.monotonic

    def __post_init__(self) -> None:
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive when set")

    def until(self, probe: Callable[[], T], *, satisfied: Callable[[T], bool], description: str) -> T:
        deadline = None if self.timeout_seconds is None else self.clock() + self.timeout_seconds
        started = self.clock()
        attempts = 0
        while True:
            if self.cancel_event.is_set():
                raise WaitCancelledError(f"cancelled while waiting for {description}")

            observed = probe()
            if satisfied(observed):
                return observed

            attempts += 1
            if self.announce_every > 0 and attempts % self.announce_every == 0:
                elapsed = int(self.clock() - started)
                logger.info("Still waiting for %s (%ss elapsed, last observed: %s)", description, elapsed, observed)

            if deadline is not None and self.clock() >= deadline:
                raise WaitTimeoutError(
                    f"timed out after {self.timeout_seconds}s waiting for {description} "
                    f"(last observed: {observed})"
                )

            if self.cancel_event.wait(self.interval_seconds):
                raise WaitCancelledError(f"cancelled while waiting for {description}")
