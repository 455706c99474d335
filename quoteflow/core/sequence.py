"""Clock-driven identifier generation for conversations and quotes."""

from __future__ import annotations

import datetime as dt
import threading
from collections.abc import Callable


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class SequenceGenerator:
    """Monotonic millisecond counter seeded from a clock.

    Every call returns a value strictly greater than the previous one, even
    when the clock stands still or moves backwards. Quote numbers keep only the
    last four digits of the counter, so two quotes created 10 seconds apart
    can collide; callers that need hard uniqueness must rely on the database
    constraint.
    """

    def __init__(self, clock: Callable[[], dt.datetime] | None = None) -> None:
        self._clock = clock or _utcnow
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> dt.datetime:
        return self._clock()

    def next_value(self) -> int:
        millis = int(self._clock().timestamp() * 1000)
        with self._lock:
            value = max(millis, self._last + 1)
            self._last = value
        return value

    def conversation_id(self) -> str:
        return f"ENQ-{self.next_value()}"

    def quote_number(self) -> str:
        year = self._clock().year
        return f"QUO-{year}-{self.next_value() % 10000:04d}"


# Shared by every request in the process so identifiers stay monotonic.
default_sequence = SequenceGenerator()


__all__ = ["SequenceGenerator", "default_sequence"]
