"""Quiet-hours windows, evaluated in local time.

A window whose start is after its end wraps past midnight. A window whose
start equals its end covers the whole day.
"""

from datetime import datetime
from datetime import time as dtime

from ccbell.config import QuietHours, TimeWindow, parse_clock


def select_window(quiet: QuietHours, when: datetime) -> TimeWindow | None:
    """Pick the weekend/weekday variant for ``when``, else the default window."""
    is_weekend = when.weekday() >= 5  # Saturday, Sunday
    variant = quiet.weekend if is_weekend else quiet.weekday
    if variant is not None and variant.is_set:
        return variant
    if quiet.is_set:
        return quiet
    return None


def in_window(window: TimeWindow, moment: dtime) -> bool:
    """Check whether a time of day falls inside ``window`` (start inclusive, end exclusive)."""
    start = parse_clock(window.start)
    end = parse_clock(window.end)
    if start == end:
        return True
    if start < end:
        return start <= moment < end
    # Overnight, e.g. 22:00–07:00
    return moment >= start or moment < end


def is_quiet(quiet: QuietHours, when: datetime) -> bool:
    """Whether notifications should be silenced at local time ``when``."""
    window = select_window(quiet, when)
    if window is None:
        return False
    return in_window(window, when.time())
