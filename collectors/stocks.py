"""
Foreign stock feed - one global cache of the travel-shop stock export.

One request per refresh period regardless of how many subjects watch items.
The last good export is backed up to disk and keeps being served (marked
stale) while the feed is failing.
"""
import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

import httpx

from collectors.base import ApiError, request_json
from config import STOCK_FEED
from persistence import JsonDocumentStore

logger = logging.getLogger("torn_sentinel.collectors.stocks")

CACHE_NAMESPACE = "stock_cache"

# key -> (feed code, display name)
COUNTRIES = {
    "argentina": ("arg", "Argentina"),
    "canada": ("can", "Canada"),
    "cayman": ("cay", "Cayman Islands"),
    "china": ("chi", "China"),
    "hawaii": ("haw", "Hawaii"),
    "japan": ("jap", "Japan"),
    "mexico": ("mex", "Mexico"),
    "southafrica": ("sou", "South Africa"),
    "switzerland": ("swi", "Switzerland"),
    "uk": ("uni", "United Kingdom"),
    "uae": ("uae", "UAE"),
}


def country_code(country: str) -> Optional[str]:
    """Resolves a display name, key or feed code to the feed code."""
    wanted = (country or "").strip().lower()
    for key, (code, name) in COUNTRIES.items():
        if wanted in (key, code, name.lower()):
            return code
    return None


def country_name(country: str) -> str:
    code = country_code(country)
    for feed_code, name in COUNTRIES.values():
        if feed_code == code:
            return name
    return country


def normalize_export(raw: Dict) -> Dict[str, List[Dict]]:
    countries: Dict[str, List[Dict]] = {}
    stocks = raw.get("stocks") if isinstance(raw, dict) else None
    if not isinstance(stocks, dict):
        return countries
    for code, country_data in stocks.items():
        items = (country_data or {}).get("stocks") or []
        countries[code] = [
            {
                "itemId": item.get("id"),
                "name": item.get("name"),
                "quantity": int(item.get("quantity") or 0),
                "cost": item.get("cost") or 0,
            }
            for item in items
            if isinstance(item, dict)
        ]
    return countries


class StockFeed:
    def __init__(
        self,
        client: httpx.AsyncClient,
        backend: Optional[JsonDocumentStore] = None,
        url: str = STOCK_FEED["url"],
        refresh_seconds: float = STOCK_FEED["refresh_seconds"],
        hard_ttl_seconds: float = STOCK_FEED["hard_ttl_seconds"],
        timeout: float = STOCK_FEED["timeout"],
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.backend = backend
        self.url = url
        self.refresh_seconds = refresh_seconds
        self.hard_ttl_seconds = hard_ttl_seconds
        self.timeout = timeout
        self._clock = clock
        self._last_attempt = 0.0
        self._task: Optional[asyncio.Task] = None
        self.cache = {"updatedAt": 0.0, "error": None, "countries": {}}
        self._load()

    def _load(self) -> None:
        if self.backend is None:
            return
        data = self.backend.load(CACHE_NAMESPACE)
        if isinstance(data.get("countries"), dict):
            self.cache.update(data)
            logger.info(f"Stock cache loaded from disk ({len(self.cache['countries'])} countries)")

    @property
    def is_stale(self) -> bool:
        return self.cache["error"] is not None or self._clock() - self.cache["updatedAt"] > self.hard_ttl_seconds

    async def refresh(self, force: bool = False) -> bool:
        now = self._clock()
        if not force and now - self._last_attempt < self.refresh_seconds:
            return False
        self._last_attempt = now
        try:
            raw = await request_json(self.client, self.url, timeout=self.timeout,
                                     headers={"User-Agent": "TornSentinel/2.0"})
        except ApiError as exc:
            self.cache["error"] = str(exc)
            logger.error(f"Stock feed fetch failed: {exc} (using cached data)", extra={"code": exc.code})
            return False

        countries = normalize_export(raw)
        if not countries:
            self.cache["error"] = "empty export"
            logger.warning("Stock feed returned no countries (using cached data)")
            return False
        self.cache["countries"].update(countries)
        self.cache["updatedAt"] = now
        self.cache["error"] = None
        if self.backend is not None:
            try:
                self.backend.save(CACHE_NAMESPACE, self.cache)
            except OSError as exc:
                logger.error(f"Failed to save stock cache: {exc}")
        logger.info(f"Stock feed refreshed ({len(countries)} countries)")
        return True

    def snapshot(self, country: str) -> Optional[List[Dict]]:
        """Items on sale in a country, or None when the country is unknown to the feed."""
        code = country_code(country)
        if code is None or code not in self.cache["countries"]:
            return None
        return list(self.cache["countries"][code])

    def has_data(self) -> bool:
        return bool(self.cache["countries"])

    async def _run(self) -> None:
        while True:
            try:
                await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Stock feed loop error: {exc}", exc_info=True)
            await asyncio.sleep(self.refresh_seconds)

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info("Stock feed started", extra={"refresh_seconds": self.refresh_seconds})

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Stock feed stopped")
