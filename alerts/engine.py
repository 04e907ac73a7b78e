"""
Alert Engine - edge detection, cooldown and rate-limit enforcement.

For every definition bound to the fetched data group:
1. evaluate the condition against (previous observation, fresh payload)
2. clear the fired flag when the definition's reset condition holds
3. fire only if the condition holds, the flag is clear, the key is not
   cooling down and the subject is under the rate limit
Flag, cooldown and rate-limit slot are committed before the send is
attempted, so a failed send is not retried.
"""
import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, Optional, Tuple

from alerts.catalog import definitions_for_group, get_definition
from alerts.rate_limit import RateLimiter
from alerts.registry import AlertDefinition, Severity
from alerts.state import SubjectStateStore
from notifier import Notification

logger = logging.getLogger("torn_sentinel.alerts.engine")


class AlertEngine:
    def __init__(
        self,
        store: SubjectStateStore,
        notifier,
        rate_limiter: RateLimiter,
        config: Optional[Dict] = None,
        enabled: bool = True,
        definitions_for: Callable[[str], Iterable[AlertDefinition]] = definitions_for_group,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.notifier = notifier
        self.rate_limiter = rate_limiter
        self.config = dict(config or {})
        self.enabled = enabled
        self._definitions_for = definitions_for
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, subject_id: str) -> asyncio.Lock:
        if subject_id not in self._locks:
            self._locks[subject_id] = asyncio.Lock()
        return self._locks[subject_id]

    async def evaluate(self, subject_id: str, payload: Dict, data_group: str) -> None:
        """Processes one freshly fetched payload for a subject, then merges it into the observed state."""
        if not self.enabled:
            return
        # Cadences overlap in time; a subject's record is mutated by one evaluation at a time.
        async with self._lock(subject_id):
            prev = self.store.observed(subject_id)
            for definition in self._definitions_for(data_group):
                try:
                    await self._process(subject_id, definition, prev, payload)
                except Exception as exc:
                    logger.error(
                        "Error processing alert %s: %s", definition.key, exc, exc_info=True,
                        extra={"subject_id": subject_id, "alert_key": definition.key, "data_group": data_group},
                    )
            self.store.merge_observed(subject_id, payload)

    async def _process(self, subject_id: str, definition: AlertDefinition, prev: Dict, curr: Dict) -> bool:
        met = definition.evaluate(prev, curr, self.config)

        if self.store.get_flag(subject_id, definition.key) and definition.should_reset(prev, curr):
            self.store.set_flag(subject_id, definition.key, False)

        if not met or self.store.get_flag(subject_id, definition.key):
            return False

        now = self._clock()
        if self.store.is_on_cooldown(subject_id, definition.key, definition.cooldown_seconds, now):
            remaining = self.store.remaining_cooldown(subject_id, definition.key, definition.cooldown_seconds, now)
            logger.debug("Alert on cooldown.",
                         extra={"subject_id": subject_id, "alert_key": definition.key, "remaining_seconds": remaining})
            return False

        if self.rate_limiter.is_limited(subject_id, now):
            logger.info(f"Rate limited: {definition.key}", extra={"subject_id": subject_id, "alert_key": definition.key})
            return False

        lines = definition.render(curr, prev, self.config)
        self.store.set_flag(subject_id, definition.key, True)
        self.store.set_last_fire_at(subject_id, definition.key, now)
        self.rate_limiter.record(subject_id, now)

        notification = Notification(
            title=definition.title, emoji=definition.emoji, severity=definition.severity, lines=lines,
        )
        await self._send(subject_id, definition.key, notification)
        return True

    async def _send(self, subject_id: str, key: str, notification: Notification) -> bool:
        try:
            sent = await self.notifier.send(subject_id, notification)
        except Exception as exc:
            logger.error(f"Failed to send alert {key}: {exc}", extra={"subject_id": subject_id, "alert_key": key})
            return False
        if sent:
            logger.info(f"Alert sent: {key}", extra={"subject_id": subject_id, "alert_key": key})
        else:
            logger.warning(f"Alert not delivered: {key}", extra={"subject_id": subject_id, "alert_key": key})
        return bool(sent)

    async def send_test_alert(self, subject_id: str, key: str) -> Tuple[bool, Optional[str]]:
        """Sends a sample of an alert without touching flags, cooldowns or the rate limiter."""
        definition = get_definition(key)
        if definition is None:
            return False, "Alert not found"
        notification = Notification(
            title=f"[TEST] {definition.title}",
            emoji=definition.emoji,
            severity=Severity.INFO,
            lines=["This is a test alert", "No action required"],
        )
        try:
            sent = await self.notifier.send(subject_id, notification)
        except Exception as exc:
            return False, str(exc)
        return (True, None) if sent else (False, "Send failed")

    def forget_subject(self, subject_id: str) -> None:
        self.store.remove_subject(subject_id)
        self.rate_limiter.forget(subject_id)
        self._locks.pop(subject_id, None)
