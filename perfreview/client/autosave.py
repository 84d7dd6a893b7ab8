import time
from typing import Callable

from perfreview.core.config import settings


class AutosavePolicy:
    """
    Decides when the form should save: after `idle_seconds` without edits,
    and after a failed save on an exponential backoff capped at
    `retry_max_seconds`. Once failures have lasted `retry_window_seconds`
    the policy reports itself exhausted; retrying still continues.

    No timers or threads: the host calls `due()` from its own loop.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        idle_seconds: float | None = None,
        retry_base_seconds: float | None = None,
        retry_max_seconds: float | None = None,
        retry_window_seconds: float | None = None,
    ):
        self.clock = clock
        self.idle_seconds = settings.AUTOSAVE_IDLE_SECONDS if idle_seconds is None else idle_seconds
        self.retry_base_seconds = (
            settings.AUTOSAVE_RETRY_BASE_SECONDS if retry_base_seconds is None else retry_base_seconds
        )
        self.retry_max_seconds = settings.AUTOSAVE_RETRY_MAX_SECONDS if retry_max_seconds is None else retry_max_seconds
        self.retry_window_seconds = (
            settings.AUTOSAVE_RETRY_WINDOW_SECONDS if retry_window_seconds is None else retry_window_seconds
        )

        self.last_change_at: float | None = None
        self.failures = 0
        self.first_failure_at: float | None = None
        self.next_retry_at: float | None = None

    def record_change(self) -> None:
        self.last_change_at = self.clock()

    def due(self) -> bool:
        now = self.clock()
        if self.next_retry_at is not None:
            return now >= self.next_retry_at
        return self.last_change_at is not None and now - self.last_change_at >= self.idle_seconds

    def record_success(self) -> None:
        self.failures = 0
        self.first_failure_at = None
        self.next_retry_at = None
        self.last_change_at = None

    def record_failure(self) -> float:
        """Schedule the next retry; returns the delay in seconds."""
        now = self.clock()
        self.failures += 1
        if self.first_failure_at is None:
            self.first_failure_at = now
        delay = min(self.retry_base_seconds * 2 ** (self.failures - 1), self.retry_max_seconds)
        self.next_retry_at = now + delay
        return delay

    @property
    def exhausted(self) -> bool:
        return self.first_failure_at is not None and self.clock() - self.first_failure_at >= self.retry_window_seconds

    def cancel_retries(self) -> None:
        self.next_retry_at = None
        self.last_change_at = None
