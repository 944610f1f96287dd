"""
Off-peak charging window.

Pure functions deciding when a plugged-in vehicle may start charging and
when the allowed window closes:

- weekdays: charging is allowed from midnight until 06:00
- weekends (Saturday, Sunday): charging is allowed from midnight until 14:00

A plug-in inside the window starts right away; a plug-in after the cutoff
is deferred to the next midnight. The caller supplies ``now`` so the rules can
be evaluated for any instant.
"""

from datetime import datetime, timedelta

from .config import START_MARGIN_SEC

WEEKDAY_CUTOFF_HOUR = 6
WEEKEND_CUTOFF_HOUR = 14

# chargers refuse RemoteStartTransaction right after the plug-in notification
SAFETY_MARGIN = timedelta(seconds=START_MARGIN_SEC)


def is_weekend(now: datetime) -> bool:
    return now.weekday() >= 5


def cutoff_hour(now: datetime) -> int:
    return WEEKEND_CUTOFF_HOUR if is_weekend(now) else WEEKDAY_CUTOFF_HOUR


def next_midnight(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)


def compute_next_start(now: datetime, margin: timedelta = SAFETY_MARGIN) -> datetime:
    """Return the instant a RemoteStartTransaction may be sent.

    The rule is evaluated at ``now + margin``, the earliest instant the charger
    would accept the start. Before that day's cutoff hour the start is
    immediate, otherwise it is deferred to the following midnight plus
    ``margin``. A plug-in inside the last margin-width before the cutoff is
    therefore deferred as well.

    Example:
        >>> compute_next_start(datetime(2024, 6, 5, 7, 0), timedelta(seconds=10))
        datetime.datetime(2024, 6, 6, 0, 0, 10)
        >>> compute_next_start(datetime(2024, 6, 5, 5, 59, 55), timedelta(seconds=10))
        datetime.datetime(2024, 6, 6, 0, 0, 10)
    """
    earliest = now + margin
    if earliest.hour < cutoff_hour(earliest):
        return earliest
    return next_midnight(earliest) + margin


def compute_stop(now: datetime) -> datetime:
    """Return the end of the charging window on ``now``'s calendar day."""
    return now.replace(hour=cutoff_hour(now), minute=0, second=0, microsecond=0)
