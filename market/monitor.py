"""
Market Monitor - per watched item restock state machine.

    IDLE --(flying to country, <= arm window left)--> ARMED
    IDLE / ARMED --(arrived)--> MONITORING
    MONITORING --(stock 0 -> N)--> TRIGGERED --> MONITORING
    MONITORING --(low stock, not purchased, throttled)--> LOW_STOCK_WARNING --> MONITORING
    MONITORING --(recent buy of the item)--> MONITORING_PURCHASED
    any watching state --(left the country)--> IDLE

`advance` is a pure function of (watch, travel, stock snapshot, purchased, now)
so the same inputs always give the same transition. The cycle wraps it with
the network reads and the notifications.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from collectors.base import ApiError
from collectors.stocks import country_code, country_name
from config import MARKET_MONITOR, POLL_INTERVALS
from market.storage import WatchedItemAlert, WatchedItemStore, WatchState
from market.trades import TradeHistory
from notifier import Notification
from utils import format_money, num

logger = logging.getLogger("torn_sentinel.market.monitor")


@dataclass
class MarketEvent:
    state: WatchState
    quantity: Optional[int] = None
    cost: float = 0
    details: Dict = field(default_factory=dict)


def same_country(destination: Optional[str], country: str) -> bool:
    if not destination:
        return False
    a, b = country_code(destination), country_code(country)
    if a is not None and b is not None:
        return a == b
    return destination.strip().lower() == country.strip().lower()


def stock_for(items: Optional[List[Dict]], item_id: int) -> Optional[Dict]:
    """The item's stock entry; None when the country is unknown, zero stock when the item is unlisted."""
    if items is None:
        return None
    for item in items:
        if item.get("itemId") == item_id:
            return item
    return {"itemId": item_id, "quantity": 0, "cost": 0}


def advance(watch: WatchedItemAlert, travel: Dict, items: Optional[List[Dict]], purchased: bool,
            now: float, settings: Dict = MARKET_MONITOR) -> List[MarketEvent]:
    events: List[MarketEvent] = []
    at_target = same_country(travel.get("destination"), watch.country)
    time_left = num(travel, "time_left")
    stock = stock_for(items, watch.item_id)
    quantity = int(stock["quantity"]) if stock is not None else None

    if watch.state == WatchState.IDLE:
        if at_target and 0 < time_left <= settings["arm_seconds"]:
            watch.state = WatchState.ARMED
        elif at_target and time_left == 0:
            watch.state = WatchState.MONITORING
            watch.has_purchased = False

    elif watch.state == WatchState.ARMED:
        if not at_target:
            watch.state = WatchState.IDLE
        elif time_left == 0:
            watch.state = WatchState.MONITORING
            watch.has_purchased = False

    elif watch.state == WatchState.MONITORING:
        if not at_target:
            watch.state = WatchState.IDLE
        elif purchased:
            watch.state = WatchState.MONITORING_PURCHASED
            watch.has_purchased = True
            events.append(MarketEvent(WatchState.MONITORING_PURCHASED, quantity))
        elif quantity is not None and watch.last_stock == 0 and quantity > 0:
            watch.trigger_data = {"quantity": quantity, "cost": stock.get("cost", 0), "at": now}
            watch.last_restock_at = now
            events.append(MarketEvent(WatchState.TRIGGERED, quantity, stock.get("cost", 0)))
        elif (
            quantity is not None
            and not watch.has_purchased
            and 0 < quantity < settings["low_stock_threshold"]
            and now - watch.last_low_stock_warning_at >= settings["low_stock_throttle_seconds"]
        ):
            watch.last_low_stock_warning_at = now
            events.append(MarketEvent(WatchState.LOW_STOCK_WARNING, quantity, stock.get("cost", 0)))

    elif watch.state == WatchState.MONITORING_PURCHASED:
        if not at_target:
            watch.state = WatchState.IDLE
            watch.has_purchased = False

    if quantity is not None:
        watch.last_stock = quantity
    return events


def render_event(watch: WatchedItemAlert, event: MarketEvent) -> Notification:
    country = country_name(watch.country)
    if event.state == WatchState.TRIGGERED:
        return Notification(
            title="Foreign Market Restock", emoji="🟢", severity="action",
            lines=[f"**{watch.item_name}** is back in stock in **{country}**",
                   f"Stock: **{event.quantity}**", f"Price: **{format_money(event.cost)}**"],
        )
    if event.state == WatchState.LOW_STOCK_WARNING:
        return Notification(
            title="Low Stock Warning", emoji="🟠", severity="warning",
            lines=[f"**{watch.item_name}** in **{country}**: only **{event.quantity}** left",
                   f"Price: **{format_money(event.cost)}**"],
        )
    return Notification(
        title="Purchase Detected", emoji="✅", severity="info",
        lines=[f"Bought **{watch.item_name}** in **{country}**", "Stock alerts paused until you leave."],
    )


class MarketMonitor:
    def __init__(
        self,
        store: WatchedItemStore,
        fetcher,
        stock_feed,
        trades: TradeHistory,
        notifier,
        directory,
        settings: Optional[Dict] = None,
        interval: float = POLL_INTERVALS["FAST"],
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.fetcher = fetcher
        self.stock_feed = stock_feed
        self.trades = trades
        self.notifier = notifier
        self.directory = directory
        self.settings = dict(settings or MARKET_MONITOR)
        self.interval = interval
        self._clock = clock
        self._travel_cache: Dict[str, tuple] = {}
        self._task: Optional[asyncio.Task] = None

    async def _travel_status(self, subject_id: str, credential: str) -> Optional[Dict]:
        now = self._clock()
        cached = self._travel_cache.get(subject_id)
        if cached and now - cached[0] < self.settings["travel_cache_seconds"]:
            return cached[1]
        try:
            travel = await self.fetcher.travel_status(credential)
        except ApiError as exc:
            logger.warning(f"Travel status unavailable: {exc}", extra={"subject_id": subject_id, "code": exc.code})
            return None
        self._travel_cache[subject_id] = (now, travel)
        return travel

    def _purchased(self, subject_id: str, watch: WatchedItemAlert, now: float) -> bool:
        for trade in self.trades.recent_trades(subject_id, self.settings["purchase_window_seconds"], now=now):
            if trade.get("itemId") == watch.item_id and same_country(trade.get("country"), watch.country):
                return True
        return False

    async def run_cycle(self) -> int:
        """One pass over every subject with watches. Returns the number of notifications sent."""
        if not self.stock_feed.has_data():
            logger.debug("No stock data yet, skipping market cycle")
            return 0
        if self.stock_feed.is_stale:
            logger.warning("Stock data is stale, restock detection may lag")
        sent = 0
        subjects = self.directory.list_subjects()
        for subject_id, watches in self.store.all_watches().items():
            subject = subjects.get(subject_id)
            if subject is None or not subject.credential:
                continue
            try:
                sent += await self._run_subject(subject_id, subject.credential, watches)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Market processing error: {exc}", exc_info=True, extra={"subject_id": subject_id})
        return sent

    async def _run_subject(self, subject_id: str, credential: str, watches: List[WatchedItemAlert]) -> int:
        travel = await self._travel_status(subject_id, credential)
        if travel is None:
            return 0
        sent = 0
        changed = False
        try:
            for watch in watches:
                now = self._clock()
                before = watch.to_dict()
                purchased = watch.state == WatchState.MONITORING and self._purchased(subject_id, watch, now)
                events = advance(watch, travel, self.stock_feed.snapshot(watch.country), purchased, now, self.settings)
                if before["state"] != watch.state.value:
                    logger.info(f"Watch {watch.item_name} ({watch.country}): {before['state']} -> {watch.state.value}",
                                extra={"subject_id": subject_id})
                for event in events:
                    if await self._notify(subject_id, watch, event):
                        sent += 1
                changed = changed or before != watch.to_dict()
        finally:
            if changed:
                self.store.save()
        return sent

    async def _notify(self, subject_id: str, watch: WatchedItemAlert, event: MarketEvent) -> bool:
        try:
            ok = await self.notifier.send(subject_id, render_event(watch, event))
        except Exception as exc:
            logger.error(f"Failed to send market alert: {exc}", exc_info=True, extra={"subject_id": subject_id})
            return False
        if ok:
            logger.info(f"Market alert sent: {event.state.value}",
                        extra={"subject_id": subject_id, "item_id": watch.item_id, "country": watch.country})
        return bool(ok)

    async def _run(self) -> None:
        while True:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Market monitor cycle error: {exc}", exc_info=True)
            await asyncio.sleep(self.interval)

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="market-monitor")
            logger.info("Market monitor started", extra={"interval": self.interval})

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.store.flush()
        logger.info("Market monitor stopped")
