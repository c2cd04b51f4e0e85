# timeblock/collaborators.py
import logging
from datetime import date, datetime, timedelta
from typing import Iterable, List, Protocol, Tuple

from .models import FixedEvent, TimeBlock

logger = logging.getLogger(__name__)


class CalendarSource(Protocol):
    def fixed_blocks(self, day: date) -> List[TimeBlock]:
        """Protected calendar blocks for `day`; raises CollaboratorUnavailable when unreachable."""
        ...


class NotificationScheduler(Protocol):
    def schedule(self, title: str, start: datetime, lead_time: timedelta) -> None:
        ...


class FocusLockExecutor(Protocol):
    def protect(self, blocks: List[TimeBlock]) -> None:
        ...


class StaticCalendarSource:
    """Calendar backed by a fixed list of events (demo and tests)."""

    def __init__(self, events: Iterable[FixedEvent] = ()):
        self.events = list(events)

    def fixed_blocks(self, day: date) -> List[TimeBlock]:
        return [e.to_block() for e in self.events if e.start.date() == day]


class LoggingNotifier:
    """Records notifications instead of delivering them."""

    def __init__(self):
        self.sent: List[Tuple[str, datetime]] = []

    def schedule(self, title: str, start: datetime, lead_time: timedelta) -> None:
        fire_at = start - lead_time
        self.sent.append((title, fire_at))
        logger.info("notification %r scheduled for %s", title, fire_at.isoformat())


class LoggingFocusLock:
    """Keeps the last set of focus windows handed over for enforcement."""

    def __init__(self):
        self.windows: List[Tuple[datetime, datetime]] = []

    def protect(self, blocks: List[TimeBlock]) -> None:
        self.windows = [(b.start, b.end) for b in blocks]
        logger.info("focus lock armed for %d windows", len(self.windows))
