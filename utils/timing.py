"""WSPR transmit-window timing.

Transmissions start one second into every even UTC minute.  A scheduler
calls these helpers to decide when to start sending.
"""
from datetime import datetime, timezone
from typing import Optional

from . import SAMPLE_RATE_IN_HZ, TRANSMISSION_PERIOD_SEC, TRANSMISSION_SAMPLES

# Seconds after the start of the even minute during which a transmission may
# still begin.
TRANSMIT_START_WINDOW_SEC = 2


def _utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def is_wspr_transmit_time(now: Optional[datetime] = None) -> bool:
    """Return ``True`` during the first two seconds of an even UTC minute.

    Naive datetimes are taken to be UTC.
    """
    t = _utc(now)
    return t.minute % 2 == 0 and t.second < TRANSMIT_START_WINDOW_SEC


def seconds_until_next_transmit_window(now: Optional[datetime] = None) -> int:
    """Return whole seconds until the next transmit window, in ``0..119``.

    Zero while a window is open.
    """
    t = _utc(now)
    if is_wspr_transmit_time(t):
        return 0
    elapsed = (t.minute % 2) * 60 + t.second
    return (TRANSMISSION_PERIOD_SEC - elapsed) % TRANSMISSION_PERIOD_SEC


def transmission_duration_seconds() -> float:
    """Return the on-air length of one transmission (about 110.6 s)."""
    return TRANSMISSION_SAMPLES / SAMPLE_RATE_IN_HZ
