"""Helpers for reporting run durations."""

from datetime import timedelta


def format_duration(duration: timedelta) -> str:
    """
    Format a duration as HH:MM:SS.

    Hours are not wrapped at 24, so a 25 hour run reads 25:00:00.
    """
    secs = int(duration.total_seconds())
    hh = secs // (60 * 60)
    mm = (secs // 60) % 60
    ss = secs % 60
    return f"{hh:02d}:{mm:02d}:{ss:02d}"
