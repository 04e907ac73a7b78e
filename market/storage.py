import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from persistence import DebouncedDocument

logger = logging.getLogger("torn_sentinel.market.storage")


class WatchState(str, Enum):
    IDLE = "IDLE"
    ARMED = "ARMED"
    MONITORING = "MONITORING"
    MONITORING_PURCHASED = "MONITORING_PURCHASED"
    # transient: resolved back to MONITORING within the same cycle
    TRIGGERED = "TRIGGERED"
    LOW_STOCK_WARNING = "LOW_STOCK_WARNING"


@dataclass
class WatchedItemAlert:
    item_id: int
    item_name: str
    country: str
    state: WatchState = WatchState.IDLE
    last_stock: Optional[int] = None
    has_purchased: bool = False
    last_low_stock_warning_at: float = 0.0
    last_restock_at: float = 0.0
    trigger_data: Optional[Dict] = None
    created_at: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "itemId": self.item_id,
            "itemName": self.item_name,
            "country": self.country,
            "state": self.state.value,
            "lastStock": self.last_stock,
            "hasPurchased": self.has_purchased,
            "lastLowStockWarningAt": self.last_low_stock_warning_at,
            "lastRestockAt": self.last_restock_at,
            "triggerData": self.trigger_data,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "WatchedItemAlert":
        try:
            state = WatchState(data.get("state", WatchState.IDLE.value))
        except ValueError:
            state = WatchState.IDLE
        # a transient state can only be persisted by a crash mid-cycle
        if state in (WatchState.TRIGGERED, WatchState.LOW_STOCK_WARNING):
            state = WatchState.MONITORING
        return cls(
            item_id=int(data.get("itemId") or 0),
            item_name=data.get("itemName") or str(data.get("itemId")),
            country=data.get("country") or "",
            state=state,
            last_stock=data.get("lastStock"),
            has_purchased=bool(data.get("hasPurchased", False)),
            last_low_stock_warning_at=float(data.get("lastLowStockWarningAt") or 0),
            last_restock_at=float(data.get("lastRestockAt") or 0),
            trigger_data=data.get("triggerData"),
            created_at=float(data.get("createdAt") or 0),
        )


class WatchedItemStore:
    """Watched (subject, country, item) tuples, persisted as {subject: {"alerts": [...]}}."""

    def __init__(self, document: DebouncedDocument, clock: Callable[[], float] = time.time):
        self.document = document
        self._clock = clock
        self._watches: Dict[str, List[WatchedItemAlert]] = {}
        for subject_id, entry in document.data.items():
            records = entry.get("alerts", []) if isinstance(entry, dict) else []
            self._watches[subject_id] = [WatchedItemAlert.from_dict(r) for r in records if isinstance(r, dict)]
        logger.info(f"WatchedItemStore initialized with {sum(len(w) for w in self._watches.values())} watches.")

    def _find(self, subject_id: str, item_id: int, country: str) -> Optional[WatchedItemAlert]:
        for watch in self._watches.get(subject_id, []):
            if watch.item_id == item_id and watch.country.lower() == country.lower():
                return watch
        return None

    def add_watch(self, subject_id: str, item_id: int, item_name: str, country: str) -> WatchedItemAlert:
        existing = self._find(subject_id, item_id, country)
        if existing is not None:
            return existing
        watch = WatchedItemAlert(item_id=item_id, item_name=item_name, country=country, created_at=self._clock())
        self._watches.setdefault(subject_id, []).append(watch)
        self.save()
        return watch

    def remove_watch(self, subject_id: str, item_id: int, country: str) -> bool:
        watch = self._find(subject_id, item_id, country)
        if watch is None:
            return False
        self._watches[subject_id].remove(watch)
        self.save()
        return True

    def watches_for(self, subject_id: str) -> List[WatchedItemAlert]:
        return list(self._watches.get(subject_id, []))

    def all_watches(self) -> Dict[str, List[WatchedItemAlert]]:
        return {subject_id: list(watches) for subject_id, watches in self._watches.items() if watches}

    def remove_subject(self, subject_id: str) -> bool:
        if self._watches.pop(subject_id, None) is None:
            return False
        self.save()
        return True

    def save(self) -> None:
        """Syncs the records into the backing document and schedules a write."""
        self.document.data.clear()
        for subject_id, watches in self._watches.items():
            self.document.data[subject_id] = {"alerts": [w.to_dict() for w in watches]}
        self.document.touch()

    def flush(self) -> bool:
        self.save()
        return self.document.flush(force=True)
