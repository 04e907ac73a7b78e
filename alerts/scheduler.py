"""
Alert Scheduler - multi-cadence polling loop.

Three independent timers (FAST / MEDIUM / SLOW). Each tick walks every
subject with a credential and fetches each data group bound to that
cadence, unless the (subject, group) pair is inside a backoff window.
A failure for one pair never aborts the rest of the cycle.
"""
import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional

from alerts.catalog import groups_for_cadence
from alerts.engine import AlertEngine
from collectors.base import ApiError
from config import BACKOFF, POLL_INTERVALS

logger = logging.getLogger("torn_sentinel.alerts.scheduler")


@dataclass
class BackoffEntry:
    next_allowed_at: float
    current_delay: float


class BackoffTable:
    """
    Per (subject, group) retry delays: base on the first failure, doubling on
    consecutive failures up to the cap. A pair that stayed idle (eligible but
    not failing) for longer than the cap starts again from base.
    """

    def __init__(self, base_seconds: float = BACKOFF["base_seconds"], max_seconds: float = BACKOFF["max_seconds"]):
        self.base_seconds = base_seconds
        self.max_seconds = max_seconds
        self._entries: Dict[str, BackoffEntry] = {}

    @staticmethod
    def key(subject_id: str, data_group: str) -> str:
        return f"{subject_id}:{data_group}"

    def get(self, key: str) -> Optional[BackoffEntry]:
        return self._entries.get(key)

    def is_blocked(self, key: str, now: float) -> bool:
        entry = self._entries.get(key)
        return entry is not None and now < entry.next_allowed_at

    def record_failure(self, key: str, now: float) -> BackoffEntry:
        entry = self._entries.get(key)
        if entry is None or now - entry.next_allowed_at > self.max_seconds:
            delay = self.base_seconds
        else:
            delay = min(entry.current_delay * 2, self.max_seconds)
        entry = BackoffEntry(next_allowed_at=now + delay, current_delay=delay)
        self._entries[key] = entry
        return entry

    def record_success(self, key: str) -> None:
        self._entries.pop(key, None)

    def snapshot(self) -> Dict[str, Dict]:
        return {key: asdict(entry) for key, entry in self._entries.items()}


class PollScheduler:
    def __init__(
        self,
        engine: AlertEngine,
        fetcher,
        directory,
        intervals: Optional[Dict[str, float]] = None,
        backoff: Optional[BackoffTable] = None,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.engine = engine
        self.fetcher = fetcher
        self.directory = directory
        self.intervals = dict(intervals or POLL_INTERVALS)
        self.backoff = backoff or BackoffTable()
        self.enabled = enabled
        self._clock = clock
        self._tasks: Dict[str, asyncio.Task] = {}

    async def start(self) -> None:
        if not self.enabled:
            logger.warning("Alert scheduler disabled (ALERT_ENABLED=false)")
            return
        for cadence, period in self.intervals.items():
            if cadence not in self._tasks:
                self._tasks[cadence] = asyncio.create_task(self._loop(cadence, period), name=f"poll-{cadence}")
        logger.info("Alert scheduler started", extra={"intervals": self.intervals})

    async def stop(self) -> None:
        tasks = list(self._tasks.items())
        self._tasks.clear()
        for cadence, task in tasks:
            task.cancel()
        for cadence, task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info(f"Stopped alert interval: {cadence}")
        if self.engine.store.flush():
            logger.info("Alert state saved")

    async def _loop(self, cadence: str, period: float) -> None:
        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            await self.run_cycle(cadence)
            await asyncio.sleep(max(0.0, period - (loop.time() - started)))

    async def run_cycle(self, cadence: str) -> int:
        """One tick for a cadence. Returns the number of successful fetches."""
        polled = 0
        try:
            subjects = self.directory.list_subjects()
            groups = groups_for_cadence(cadence)
            for subject_id, subject in subjects.items():
                if not subject.credential:
                    continue
                for data_group in groups:
                    if self.backoff.is_blocked(BackoffTable.key(subject_id, data_group), self._clock()):
                        continue
                    if await self.poll_group(subject_id, subject.credential, data_group):
                        polled += 1
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"Alert poll cycle error ({cadence}): {exc}", exc_info=True)
        return polled

    async def poll_group(self, subject_id: str, credential: str, data_group: str) -> bool:
        key = BackoffTable.key(subject_id, data_group)
        try:
            data = await self.fetcher.fetch(credential, data_group)
        except ApiError as exc:
            self._handle_error(subject_id, data_group, exc)
            return False
        except Exception as exc:
            self._handle_error(subject_id, data_group, ApiError(str(exc)))
            return False

        if not data:
            logger.warning("Empty data from API", extra={"subject_id": subject_id, "data_group": data_group})
            return False

        self.backoff.record_success(key)
        try:
            await self.engine.evaluate(subject_id, data, data_group)
        except Exception as exc:
            logger.error(f"Alert processing error: {exc}", exc_info=True,
                         extra={"subject_id": subject_id, "data_group": data_group})
        return True

    def _handle_error(self, subject_id: str, data_group: str, error: ApiError) -> None:
        entry = self.backoff.record_failure(BackoffTable.key(subject_id, data_group), self._clock())
        context = {"subject_id": subject_id, "data_group": data_group, "code": error.code, "retry_in": entry.current_delay}
        if error.is_rate_limit:
            logger.warning("Rate limited by API", extra=context)
        elif error.is_timeout:
            logger.warning(f"Timeout or network error: {error}", extra=context)
        else:
            logger.error(f"API error: {error}", extra=context)

    def status(self) -> Dict:
        return {
            "enabled": self.enabled,
            "active_cadences": list(self._tasks.keys()),
            "backoffs": self.backoff.snapshot(),
            "tracked_subjects": len(self.engine.store.tracked_subjects()),
        }
