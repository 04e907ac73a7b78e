import time
from typing import Callable, Dict, List, Optional

from persistence import DebouncedDocument


class TradeHistory:
    """
    Recorded purchases per subject, persisted in the `trade_history` document.

    Nothing in this service detects purchases. The deployment's trade
    detector (the cash-drop matcher that prices a spend against the stock
    feed) writes through `record_buy` in the same process. The market
    monitor only reads the records, so without a writer a watch never
    reaches MONITORING_PURCHASED.
    """

    def __init__(self, document: DebouncedDocument, clock: Callable[[], float] = time.time):
        self.document = document
        self._clock = clock

    def _entry(self, subject_id: str) -> Dict:
        entry = self.document.data.setdefault(subject_id, {"buys": []})
        entry.setdefault("buys", [])
        return entry

    def record_buy(self, subject_id: str, item_id: int, item_name: str, qty: int, unit_price: float,
                   country: str, when: Optional[float] = None) -> Dict:
        when = self._clock() if when is None else when
        record = {
            "id": f"buy_{int(when * 1000)}",
            "type": "BUY",
            "itemId": item_id,
            "itemName": item_name,
            "qty": qty,
            "unitPrice": unit_price,
            "totalCost": unit_price * qty,
            "country": country,
            "timestamp": when,
        }
        self._entry(subject_id)["buys"].append(record)
        self.document.touch()
        return record

    def recent_trades(self, subject_id: str, window_seconds: float, now: Optional[float] = None) -> List[Dict]:
        now = self._clock() if now is None else now
        entry = self.document.data.get(subject_id)
        if not isinstance(entry, dict):
            return []
        cutoff = now - window_seconds
        return [dict(t) for t in entry.get("buys", []) if float(t.get("timestamp") or 0) >= cutoff]
