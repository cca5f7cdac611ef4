"""
Daily schedule driver for backup runs.

The configured HH:MM is turned into an APScheduler CronTrigger once at
startup. The loop then sleeps until the next fire time, runs the job and
repeats, forever. Runs never overlap and missed runs are not caught up: a
run that overlaps its next fire time just pushes the following one to the
next day.
"""

import logging
import re
import time
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from apscheduler.triggers.cron import CronTrigger


logger = logging.getLogger(__name__)

_TIME_OF_DAY_RE = re.compile(r'^(\d{1,2}):(\d{2})$')


class ScheduleError(ValueError):
    """Raised when a schedule time cannot be parsed."""
    pass


def parse_time_of_day(value: str) -> Tuple[int, int]:
    """
    Parse a 'HH:MM' wall-clock time.

    Args:
        value: Time string, e.g. '02:30'

    Returns:
        (hour, minute) tuple

    Raises:
        ScheduleError: If the value is not a valid time of day
    """
    match = _TIME_OF_DAY_RE.match(value.strip()) if value else None
    if not match:
        raise ScheduleError(f"Invalid schedule time '{value}', expected HH:MM")

    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ScheduleError(f"Invalid schedule time '{value}', expected HH:MM")
    return hour, minute


class DailyScheduler:
    """
    Runs a job once a day at a fixed wall-clock time, forever.
    """

    def __init__(
        self,
        time_of_day: str,
        job: Callable[[], object],
        timezone: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize scheduler.

        Args:
            time_of_day: 'HH:MM' time to run the job at
            job: Callable run once per day
            timezone: Timezone name for time_of_day (default: local timezone)
            sleep: Function used to wait, in seconds

        Raises:
            ScheduleError: If time_of_day is invalid
        """
        self.hour, self.minute = parse_time_of_day(time_of_day)
        self.job = job
        self.trigger = CronTrigger(hour=self.hour, minute=self.minute, second=0, timezone=timezone)
        self.sleep = sleep
        self.last_run_time: Optional[datetime] = None

    @property
    def timezone(self):
        return self.trigger.timezone

    def now(self) -> datetime:
        return datetime.now(self.timezone)

    def next_run_time(self, now: Optional[datetime] = None) -> datetime:
        """
        Compute the next occurrence of the configured time.

        Today if the time is still ahead, otherwise tomorrow. An occurrence
        that already fired is never returned again.

        Args:
            now: Current time (default: now in the scheduler timezone)

        Returns:
            Timezone-aware datetime of the next run
        """
        start = now or self.now()
        if start.tzinfo is None:
            start = start.replace(tzinfo=self.timezone)
        if self.last_run_time is not None and start <= self.last_run_time:
            start = self.last_run_time + timedelta(seconds=1)
        return self.trigger.get_next_fire_time(None, start)

    def seconds_until_next(self, now: Optional[datetime] = None) -> float:
        """
        Seconds to sleep until the next run.

        Args:
            now: Current time (default: now in the scheduler timezone)

        Returns:
            Non-negative number of seconds
        """
        now = now or self.now()
        if now.tzinfo is None:
            now = now.replace(tzinfo=self.timezone)
        delay = (self.next_run_time(now) - now).total_seconds()
        return max(delay, 0.0)

    def run_pending(self):
        """Sleep until the next run time, then run the job once."""
        now = self.now()
        run_time = self.next_run_time(now)
        delay = max((run_time - now).total_seconds(), 0.0)

        logger.info(f"Next backup at {run_time.isoformat()} (in {timedelta(seconds=int(delay))})")
        self.sleep(delay)

        self.last_run_time = run_time
        try:
            self.job()
        except Exception as e:
            logger.exception(f"Scheduled backup failed: {e}")

    def run_forever(self):
        """Run the job daily. Only process termination stops this loop."""
        logger.info(f"Scheduler started, daily at {self.hour:02d}:{self.minute:02d}")
        while True:
            self.run_pending()
