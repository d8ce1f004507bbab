import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CountdownTimer:
    """Single countdown clock for a quiz session.

    The caller's clock delivers one ``tick()`` per second. Ticks only count
    while the timer is armed, so a tick that arrives after ``disarm()`` is a
    no-op. ``on_expire`` fires at most once per arming.
    """

    def __init__(self, remaining: int, on_expire: Optional[Callable[[], None]] = None):
        if remaining < 0:
            raise ValueError("Remaining time cannot be negative")
        self.remaining = remaining
        self.on_expire = on_expire
        self.armed = False
        self._expired = False

    def arm(self) -> None:
        self.armed = True
        self._expired = False
        if self.remaining == 0:
            logger.warning("Timer armed with no time left, expiring immediately")
            self._expire()

    def disarm(self) -> None:
        self.armed = False

    def tick(self) -> bool:
        """Advance one second. Returns True if this tick caused expiry."""
        if not self.armed:
            return False

        if self.remaining > 0:
            self.remaining -= 1
        if self.remaining == 0:
            self._expire()
            return True
        return False

    def _expire(self) -> None:
        self.armed = False
        if self._expired:
            return
        self._expired = True
        logger.info("Timer expired")
        if self.on_expire:
            self.on_expire()


def format_time(seconds: int) -> str:
    """H:MM:SS when an hour or more is left, otherwise MM:SS"""
    hours, rest = divmod(max(0, seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"
