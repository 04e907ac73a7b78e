import time
from typing import Callable, Dict, Optional

from utils import SlidingWindow


class RateLimiter:
    """Caps notifications per subject in a rolling window, across all alert keys."""

    def __init__(self, max_alerts: int = 3, window_seconds: float = 600.0, clock: Callable[[], float] = time.time):
        self.max_alerts = max_alerts
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, SlidingWindow] = {}

    def _window(self, subject_id: str) -> SlidingWindow:
        if subject_id not in self._windows:
            self._windows[subject_id] = SlidingWindow(self.max_alerts, self.window_seconds)
        return self._windows[subject_id]

    def is_limited(self, subject_id: str, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        return not self._window(subject_id).has_room(now)

    def record(self, subject_id: str, now: Optional[float] = None) -> None:
        now = self._clock() if now is None else now
        self._window(subject_id).record(now)

    def sent_in_window(self, subject_id: str, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        return self._window(subject_id).count(now)

    def forget(self, subject_id: str) -> None:
        self._windows.pop(subject_id, None)
