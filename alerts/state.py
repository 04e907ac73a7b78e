import logging
import math
import time
from typing import Callable, Dict, List

from persistence import DebouncedDocument
from utils import from_epoch_ms, to_epoch_ms

logger = logging.getLogger("torn_sentinel.alerts.state")


class SubjectStateStore:
    """
    Durable per-subject alert state: last observed payload (merged across data
    groups), fired flags, and last fire time per alert key.

    Persisted layout, one document for all subjects:
        {"<subject>": {"state": {...}, "flags": {"<key>": bool},
                       "lastAlert": {"<key>": epoch_ms}, "updatedAt": epoch_ms}}
    """

    def __init__(self, document: DebouncedDocument, clock: Callable[[], float] = time.time):
        self.document = document
        self._clock = clock
        logger.info(f"SubjectStateStore initialized. Tracking {len(self.document.data)} subjects.")

    def _entry(self, subject_id: str) -> Dict:
        entries = self.document.data
        entry = entries.get(subject_id)
        if not isinstance(entry, dict):
            entry = {"state": {}, "flags": {}, "lastAlert": {}, "updatedAt": to_epoch_ms(self._clock())}
            entries[subject_id] = entry
        for section in ("state", "flags", "lastAlert"):
            if not isinstance(entry.get(section), dict):
                entry[section] = {}
        return entry

    # --- observed state --------------------------------------------------

    def observed(self, subject_id: str) -> Dict:
        """Shallow copy of the last observed state, so callers can't mutate it."""
        return dict(self._entry(subject_id)["state"])

    def merge_observed(self, subject_id: str, payload: Dict) -> None:
        """Top-level fields of `payload` overwrite; fields of other data groups stay."""
        entry = self._entry(subject_id)
        entry["state"].update(payload or {})
        entry["updatedAt"] = to_epoch_ms(self._clock())
        self.document.touch()

    # --- flags -------------------------------------------------------------

    def get_flag(self, subject_id: str, key: str) -> bool:
        return bool(self._entry(subject_id)["flags"].get(key, False))

    def set_flag(self, subject_id: str, key: str, value: bool) -> None:
        self._entry(subject_id)["flags"][key] = bool(value)
        self.document.touch()

    # --- cooldowns ---------------------------------------------------------

    def last_fire_at(self, subject_id: str, key: str) -> float:
        """Epoch seconds of the last fire, 0 when never fired."""
        return from_epoch_ms(self._entry(subject_id)["lastAlert"].get(key, 0))

    def set_last_fire_at(self, subject_id: str, key: str, when: float) -> None:
        # Rounded up, so a cooldown measured from the stored value never ends early
        self._entry(subject_id)["lastAlert"][key] = to_epoch_ms(when, round_up=True)
        self.document.touch()

    def is_on_cooldown(self, subject_id: str, key: str, cooldown_seconds: float, now: float) -> bool:
        last = self.last_fire_at(subject_id, key)
        if last == 0:
            return False
        return now - last < cooldown_seconds

    def remaining_cooldown(self, subject_id: str, key: str, cooldown_seconds: float, now: float) -> int:
        last = self.last_fire_at(subject_id, key)
        if last == 0:
            return 0
        remaining = cooldown_seconds - (now - last)
        return math.ceil(remaining) if remaining > 0 else 0

    # --- housekeeping --------------------------------------------------------

    def tracked_subjects(self) -> List[str]:
        return list(self.document.data.keys())

    def remove_subject(self, subject_id: str) -> bool:
        if self.document.data.pop(subject_id, None) is None:
            return False
        self.document.touch()
        return True

    def flush(self) -> bool:
        return self.document.flush(force=True)
