import logging
from collections.abc import Iterable
from threading import Lock

from goldenpipe.errors import CapacityError


logger = logging.getLogger(__name__)


class AdmissionController:
    """Caps the number of builds that have not reached a terminal state.

    The count is the size of a lock-protected set of image names, so
    releasing a name twice (status poll and delete racing) only frees one slot.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError("admission limit must be at least 1")
        self.limit = limit
        self._lock = Lock()
        self._in_flight: set[str] = set()

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def holds(self, name: str) -> bool:
        with self._lock:
            return name in self._in_flight

    def acquire(self, name: str) -> bool:
        """Reserve a slot for ``name``; False when the name already held one."""
        with self._lock:
            if name in self._in_flight:
                return False
            if len(self._in_flight) >= self.limit:
                raise CapacityError(self.limit, len(self._in_flight))
            self._in_flight.add(name)
            return True

    def release(self, name: str) -> bool:
        with self._lock:
            if name not in self._in_flight:
                return False
            self._in_flight.discard(name)
            return True

    def seed(self, names: Iterable[str]) -> None:
        with self._lock:
            self._in_flight.update(names)
            count = len(self._in_flight)
        if count > self.limit:
            logger.warning(
                "admission seeded above limit in_flight=%s limit=%s", count, self.limit
            )
