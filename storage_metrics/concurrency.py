"""
Thread-safe state shared between collection workers.

- CollectionProgress: processed/total counters and the failure list
- CancellationToken: run-scoped abort signal with optional deadline
- RateLimiter: token bucket shared by every worker calling Azure Monitor
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from .errors import CollectionCancelled
from .models import FailureRecord


@dataclass(frozen=True)
class ProgressSnapshot:
    total_resources: int
    processed_resources: int
    failed_resources: int
    failures: Tuple[FailureRecord, ...] = field(default_factory=tuple)

    @property
    def remaining(self) -> int:
        return max(self.total_resources - self.processed_resources, 0)

    @property
    def percent_complete(self) -> float:
        if not self.total_resources:
            return 0.0
        return round(self.processed_resources / self.total_resources * 100, 1)


class CollectionProgress:
    """
    Counters mutated by workers. Every mutation happens under one lock;
    readers get an immutable snapshot.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._total = 0
        self._processed = 0
        self._failed = 0
        self._failures: List[FailureRecord] = []
        self._listeners: List[Callable[[ProgressSnapshot], None]] = []

    def subscribe(self, listener: Callable[[ProgressSnapshot], None]) -> None:
        """Register a callback invoked (outside the lock) after every change."""
        with self._lock:
            self._listeners.append(listener)

    def set_total(self, total: int) -> None:
        with self._lock:
            self._total = total
        self._notify()

    def increment_processed(self, failed: bool = False) -> int:
        with self._lock:
            self._processed += 1
            if failed:
                self._failed += 1
            processed = self._processed
        self._notify()
        return processed

    def record_failure(self, record: FailureRecord) -> None:
        with self._lock:
            self._failures.append(record)
        self._notify()

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(
                total_resources=self._total,
                processed_resources=self._processed,
                failed_resources=self._failed,
                failures=tuple(self._failures),
            )

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        if not listeners:
            return
        snap = self.snapshot()
        for listener in listeners:
            listener(snap)


class CancellationToken:
    """
    Run-scoped cancellation signal.

    Cancelled explicitly (interrupt, fail-fast abort) or implicitly once the
    optional deadline (seconds from creation) has passed. wait() returns early
    when cancelled, so pending retry delays are interrupted.
    """

    def __init__(self, deadline_seconds: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + deadline_seconds if deadline_seconds else None
        self._reason: Optional[str] = None
        self._lock = threading.Lock()

    def cancel(self, reason: str = "Run cancelled") -> None:
        with self._lock:
            if self._reason is None:
                self._reason = reason
        self._event.set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self.cancel("Run deadline exceeded")
            return True
        return False

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CollectionCancelled(self._reason or "Run cancelled")

    def wait(self, timeout: float) -> bool:
        """Block up to timeout seconds. Returns True if cancelled."""
        if self._deadline is not None:
            remaining = self._deadline - self._clock()
            if remaining <= timeout:
                # The wait runs into the deadline
                self._event.wait(max(remaining, 0.0))
                self.cancel("Run deadline exceeded")
                return True
        self._event.wait(timeout)
        return self.cancelled


class RateLimiter:
    """
    Token bucket limiting backend calls across all workers.

    rate is tokens per second; burst is the bucket size. A rate of 0 or less
    disables limiting.
    """

    def __init__(self, rate: float, burst: int = 1,
                 clock: Callable[[], float] = time.monotonic):
        self.rate = rate
        self.burst = max(int(burst), 1)
        self._clock = clock
        self._tokens = float(self.burst)
        self._updated = clock()
        self._lock = threading.Lock()

    def _reserve(self) -> float:
        """Take a token if available; otherwise return seconds until one is."""
        with self._lock:
            now = self._clock()
            elapsed = max(now - self._updated, 0.0)
            self._tokens = min(self.burst, self._tokens + elapsed * self.rate)
            self._updated = now
            if self._tokens >= 1:
                self._tokens -= 1
                return 0.0
            return (1 - self._tokens) / self.rate

    def acquire(self, cancel_token: Optional[CancellationToken] = None) -> None:
        if self.rate <= 0:
            return
        while True:
            wait = self._reserve()
            if wait <= 0:
                return
            if cancel_token is not None:
                if cancel_token.wait(wait):
                    raise CollectionCancelled(cancel_token.reason or "Run cancelled")
            else:
                time.sleep(wait)
