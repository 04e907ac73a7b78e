"""Minimal utilities shared by the alert engine, collectors and market monitor."""
import math
import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

_TAG_RE = re.compile(r"<[^>]*>")


@dataclass
class SlidingWindow:
    """Counts events inside a trailing time window."""

    max_events: int
    window_seconds: float
    timestamps: List[float] = field(default_factory=list)

    def _prune(self, now: float):
        cutoff = now - self.window_seconds
        self.timestamps = [t for t in self.timestamps if t > cutoff]

    def count(self, now: float) -> int:
        self._prune(now)
        return len(self.timestamps)

    def has_room(self, now: float) -> bool:
        return self.count(now) < self.max_events

    def record(self, now: float):
        self.timestamps.append(now)


def dig(data: Any, *path: str, default: Any = None) -> Any:
    """Walks nested mappings, returning `default` as soon as a step is missing."""
    current = data
    for key in path:
        if not isinstance(current, Mapping) or key not in current:
            return default
        current = current[key]
    return default if current is None else current


def num(data: Any, *path: str) -> float:
    value = dig(data, *path, default=0)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def ratio(data: Any, bar: str) -> Optional[float]:
    """current/maximum for a resource bar, or None when the bar is unknown."""
    maximum = num(data, bar, "maximum")
    if maximum <= 0:
        return None
    return num(data, bar, "current") / maximum


def strip_html(text: str) -> str:
    return _TAG_RE.sub("", text or "")


def format_money(value: float) -> str:
    return f"${value:,.0f}"


def to_epoch_ms(seconds: float, round_up: bool = False) -> int:
    # rounded to the microsecond first so float noise (1000.1 * 1000) never crosses a boundary
    millis = round(seconds * 1000, 3)
    return math.ceil(millis) if round_up else round(millis)


def from_epoch_ms(value: Any) -> float:
    try:
        return float(value) / 1000.0
    except (TypeError, ValueError):
        return 0.0
