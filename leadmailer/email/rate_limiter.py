"""
Sending window and throttling.
"""
import datetime
from typing import Callable

from leadmailer.config import SendingWindow
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Keep sends inside the daily window [start_hour, end_hour) and spread a
    batch evenly over what is left of it.
    """

    def __init__(self, window: SendingWindow = None, clock: Callable[[], datetime.datetime] = None):
        self.window = window or SendingWindow()
        self.clock = clock or datetime.datetime.now

    @property
    def refusal_reason(self) -> str:
        return f"Outside allowed sending hours ({_hour_label(self.window.start_hour)}-{_hour_label(self.window.end_hour)})"

    def is_within_window(self, when: datetime.datetime = None) -> bool:
        hour = (when or self.clock()).hour
        return self.window.start_hour <= hour < self.window.end_hour

    def next_available_time(self, when: datetime.datetime = None) -> datetime.datetime:
        """
        Earliest moment a send is allowed.

        Args:
            when: Reference time, defaults to now

        Returns:
            Today at the start hour, tomorrow at the start hour, or now
        """
        now = when or self.clock()
        start_today = now.replace(hour=self.window.start_hour, minute=0, second=0, microsecond=0)
        if now.hour < self.window.start_hour:
            return start_today
        if now.hour >= self.window.end_hour:
            return start_today + datetime.timedelta(days=1)
        return now

    def delay_between_sends(self, total_to_send: int, when: datetime.datetime = None) -> int:
        """
        Minutes to wait between sends so the batch ends with the window.

        Args:
            total_to_send: Number of messages in the batch
            when: Reference time, defaults to now

        Returns:
            Delay in whole minutes, 0 outside the window or for an empty batch
        """
        now = when or self.clock()
        if total_to_send <= 0 or not self.is_within_window(now):
            return 0
        end = now.replace(hour=self.window.end_hour % 24, minute=0, second=0, microsecond=0)
        if self.window.end_hour >= 24:
            end += datetime.timedelta(days=1)
        remaining_minutes = int((end - now).total_seconds() // 60)
        return max(1, remaining_minutes // total_to_send)


def _hour_label(hour: int) -> str:
    hour = hour % 24
    suffix = "AM" if hour < 12 else "PM"
    return f"{hour % 12 or 12}{suffix}"
