"""
Query window resolution.

Maps the symbolic range/granularity tokens accepted on the command line to an
absolute [start, end] interval and a sampling interval. Pure lookups only, so
every token can be tested without touching Azure.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .constants import GRANULARITIES, GRANULARITY_ISO8601, TIME_RANGES
from .errors import InvalidConfiguration


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime
    interval: timedelta
    range_token: str
    granularity_token: str

    @property
    def timespan(self) -> str:
        """Azure Monitor timespan: '<start>/<end>' in ISO 8601."""
        return f"{self.start.isoformat()}/{self.end.isoformat()}"

    @property
    def interval_iso8601(self) -> str:
        return GRANULARITY_ISO8601[self.granularity_token]

    def to_dict(self) -> dict:
        return {
            'start': self.start.isoformat(),
            'end': self.end.isoformat(),
            'time_range': self.range_token,
            'granularity': self.granularity_token,
            'interval': self.interval_iso8601,
        }


def range_duration(token: str) -> timedelta:
    """Look up a range token ('1h' ... '30d')."""
    try:
        return TIME_RANGES[token]
    except (KeyError, TypeError):
        raise InvalidConfiguration(
            f"Unknown time range '{token}'. Valid values: {', '.join(TIME_RANGES)}"
        ) from None


def granularity_interval(token: str) -> timedelta:
    """Look up a granularity token ('1m' ... '1d')."""
    try:
        return GRANULARITIES[token]
    except (KeyError, TypeError):
        raise InvalidConfiguration(
            f"Unknown granularity '{token}'. Valid values: {', '.join(GRANULARITIES)}"
        ) from None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_time_window(
    time_range: str,
    granularity: str,
    now: Optional[Callable[[], datetime]] = None
) -> TimeWindow:
    """
    Resolve symbolic tokens into an absolute query window.

    Args:
        time_range: One of 1h, 6h, 12h, 1d, 7d, 30d
        granularity: One of 1m, 5m, 15m, 1h, 1d
        now: Clock returning the window end (default: current UTC time)

    Raises:
        InvalidConfiguration: If either token is unknown
    """
    lookback = range_duration(time_range)
    interval = granularity_interval(granularity)

    end = (now or utc_now)()
    return TimeWindow(
        start=end - lookback,
        end=end,
        interval=interval,
        range_token=time_range,
        granularity_token=granularity,
    )
