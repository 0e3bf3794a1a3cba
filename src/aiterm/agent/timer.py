"""Single cooperative countdown used for fixed-interval and watch waits."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

Clock = Callable[[], float]
Sleep = Callable[[float], None]
PollKey = Callable[[], str | None]
OnTick = Callable[[float, bool], None]

PAUSE_KEYS = frozenset({" ", "p", "P"})


class CountdownTimer:
    """Counts unpaused time toward a deadline.

    Pausing freezes the elapsed total; resuming continues from it. ``pause``
    and ``resume`` may be called from another thread while ``wait`` runs.
    """

    def __init__(
        self,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = time.sleep,
        tick: float = 0.1,
    ) -> None:
        self.clock = clock
        self.sleep = sleep
        self.tick = tick
        self.duration = 0.0
        self._accumulated = 0.0
        self._running_since: float | None = None
        self._lock = threading.Lock()

    def start(self, duration: float) -> None:
        with self._lock:
            self.duration = max(0.0, duration)
            self._accumulated = 0.0
            self._running_since = self.clock()

    @property
    def paused(self) -> bool:
        with self._lock:
            return self._running_since is None

    def pause(self) -> None:
        with self._lock:
            if self._running_since is None:
                return
            self._accumulated += self.clock() - self._running_since
            self._running_since = None

    def resume(self) -> None:
        with self._lock:
            if self._running_since is not None:
                return
            self._running_since = self.clock()

    def toggle(self) -> bool:
        """Flip the paused state and return true when now paused."""
        if self.paused:
            self.resume()
            return False
        self.pause()
        return True

    def handle_key(self, key: str | None) -> bool:
        """Toggle pause for a pause key; return true when the key was consumed."""
        if key is None or key not in PAUSE_KEYS:
            return False
        self.toggle()
        return True

    def elapsed(self) -> float:
        with self._lock:
            running = 0.0
            if self._running_since is not None:
                running = self.clock() - self._running_since
            return self._accumulated + running

    def remaining(self) -> float:
        return max(0.0, self.duration - self.elapsed())

    @property
    def expired(self) -> bool:
        return self.elapsed() >= self.duration

    def wait(
        self,
        duration: float,
        *,
        cancelled: Callable[[], bool] | None = None,
        poll_key: PollKey | None = None,
        on_tick: OnTick | None = None,
    ) -> bool:
        """Block until ``duration`` seconds of unpaused time have passed.

        Returns false when ``cancelled`` reported true before expiry.
        """
        self.start(duration)
        while not self.expired:
            if cancelled is not None and cancelled():
                return False
            if poll_key is not None:
                self.handle_key(poll_key())
            if on_tick is not None:
                on_tick(self.remaining(), self.paused)
            self.sleep(min(self.tick, self.remaining()) if not self.paused else self.tick)
        return True
