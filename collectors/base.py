import asyncio
import logging
import random
import time
from typing import Callable, Dict, Optional

import httpx

from config import HTTP_RETRY
from utils import SlidingWindow

logger = logging.getLogger("torn_sentinel.collectors")

RATE_LIMIT_CODES = {5, 8, 16, 429}
TIMEOUT_CODE = 0


class ApiError(Exception):
    """Any failed remote fetch. `code` is an HTTP status, a Torn error code, or 0 for network/timeout."""

    def __init__(self, message: str, code: int = TIMEOUT_CODE):
        super().__init__(message)
        self.code = code

    @property
    def is_rate_limit(self) -> bool:
        return self.code in RATE_LIMIT_CODES

    @property
    def is_timeout(self) -> bool:
        return self.code == TIMEOUT_CODE


class RequestBudget:
    """Per-credential request budget over a one-minute sliding window."""

    def __init__(self, max_calls: int = 100, window_seconds: float = 60.0, warn_at: Optional[int] = None,
                 clock: Callable[[], float] = time.time):
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self.warn_at = warn_at
        self._clock = clock
        self._buckets: Dict[str, SlidingWindow] = {}

    def _bucket(self, key: str) -> SlidingWindow:
        if key not in self._buckets:
            self._buckets[key] = SlidingWindow(self.max_calls, self.window_seconds)
        return self._buckets[key]

    def can_call(self, key: str) -> bool:
        return self._bucket(key).has_room(self._clock())

    def record_call(self, key: str) -> None:
        bucket = self._bucket(key)
        now = self._clock()
        bucket.record(now)
        used = bucket.count(now)
        if self.warn_at and used >= self.warn_at and used % 10 == 0:
            logger.warning(f"API rate warning: {used}/{self.max_calls} requests/min", extra={"used": used})


def _is_retriable_status(code: int) -> bool:
    # 429 means stop immediately. Do not retry.
    return code >= 500


async def request_json(
    client: httpx.AsyncClient,
    url: str,
    params: Optional[dict] = None,
    timeout: float = 10.0,
    attempts: Optional[int] = None,
    headers: Optional[dict] = None,
) -> dict:
    """GET a JSON document, retrying 5xx and network errors with jittered exponential backoff."""
    attempts = attempts or HTTP_RETRY["attempts"]
    for attempt in range(attempts):
        last = attempt == attempts - 1
        try:
            resp = await client.get(url, params=params, headers=headers, timeout=timeout)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if not _is_retriable_status(status) or last:
                raise ApiError(f"HTTP {status}: {exc.response.reason_phrase}", status) from exc
        except httpx.TimeoutException as exc:
            if last:
                raise ApiError("Request timed out", TIMEOUT_CODE) from exc
        except httpx.RequestError as exc:
            if last:
                raise ApiError(f"Network error: {exc}", TIMEOUT_CODE) from exc
        except ValueError as exc:
            raise ApiError(f"Invalid JSON from {url}: {exc}", TIMEOUT_CODE) from exc
        sleep_s = HTTP_RETRY["backoff_seconds"] * (2**attempt) + random.uniform(0, HTTP_RETRY["jitter_seconds"])
        await asyncio.sleep(sleep_s)
    raise ApiError("request failed", TIMEOUT_CODE)
