"""Wall clock abstraction, so time based assertions can be made in tests."""

import abc
import time


class Clock(abc.ABC):
    """Supplies the current time in milliseconds since the epoch."""

    @abc.abstractmethod
    def now_ms(self) -> int:
        raise NotImplementedError


class SystemClock(Clock):
    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000
