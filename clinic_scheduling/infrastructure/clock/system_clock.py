from datetime import date, datetime
from zoneinfo import ZoneInfo

from ...application.ports.clock import Clock


class SystemClock(Clock):
    """Wall clock in the clinic's timezone, returned as naive local values."""

    def __init__(self, timezone: str = "America/Sao_Paulo") -> None:
        self._tz = ZoneInfo(timezone)

    def now(self) -> datetime:
        return datetime.now(self._tz).replace(tzinfo=None, microsecond=0)

    def today(self) -> date:
        return self.now().date()
