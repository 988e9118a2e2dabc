import threading
import time
from dataclasses import dataclass, field

from goldenpipe.errors import OperationCancelled, OperationTimeout


@dataclass
class CallContext:
    """Caller-supplied deadline and cancellation signal for one operation.

    ``deadline`` is a ``time.monotonic()`` timestamp.
    """

    deadline: float | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def with_timeout(
        cls, timeout_sec: float, cancel_event: threading.Event | None = None
    ) -> "CallContext":
        return cls(
            deadline=time.monotonic() + timeout_sec,
            cancel_event=cancel_event or threading.Event(),
        )

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, operation: str) -> None:
        if self.cancel_event.is_set():
            raise OperationCancelled(f"{operation} cancelled")
        if self.expired():
            raise OperationTimeout(f"{operation} exceeded its deadline")

    def sleep(self, interval_sec: float) -> None:
        """Wait up to ``interval_sec``; wakes early when cancelled or at the deadline."""
        remaining = self.remaining()
        if remaining is not None:
            interval_sec = max(0.0, min(interval_sec, remaining))
        self.cancel_event.wait(interval_sec)
