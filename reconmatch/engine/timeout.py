"""Run-scoped deadline, polled cooperatively between units of work."""

import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TimeoutGuard:
    """
    Track the wall-clock budget of one run.

    Once the budget is exceeded the guard stays expired for the rest of the
    run, even if the clock were to go backwards.
    """

    def __init__(self, budget_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.budget_seconds = budget_seconds
        self._clock = clock
        self._started: Optional[float] = None
        self._tripped = False
        self.tripped_during: Optional[str] = None

    def start(self) -> None:
        self._started = self._clock()
        self._tripped = False
        self.tripped_during = None

    @property
    def started(self) -> bool:
        return self._started is not None

    @property
    def elapsed_seconds(self) -> float:
        if self._started is None:
            return 0.0
        return max(0.0, self._clock() - self._started)

    @property
    def elapsed_ms(self) -> int:
        return int(self.elapsed_seconds * 1000)

    @property
    def tripped(self) -> bool:
        """True once the deadline has been observed as passed."""
        return self._tripped

    def expired(self, phase: str = "") -> bool:
        """Poll the deadline. Returns True from the first overrun onwards."""
        if self._tripped:
            return True
        if self._started is None:
            self.start()
        elapsed = self.elapsed_seconds
        if elapsed > self.budget_seconds:
            self._tripped = True
            self.tripped_during = phase or None
            logger.warning(
                "Time budget of %.3fs reached after %d ms%s, stopping gracefully",
                self.budget_seconds, int(elapsed * 1000),
                f" during {phase}" if phase else "",
            )
            return True
        return False
