import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import httpx

logger = logging.getLogger("torn_sentinel.notifier")


@dataclass
class Notification:
    title: str
    emoji: str
    severity: str
    lines: List[str] = field(default_factory=list)


def format_notification(subject_id: str, notification: Notification) -> str:
    bullets = "\n".join(f"• {line}" for line in notification.lines)
    header = f"*{notification.emoji} {notification.title}*"
    return f"{header}\n{bullets}\n_subject {subject_id} · {notification.severity}_"


class TelegramNotifier:
    """Sends notifications via Telegram; prints them when no bot is configured."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        token: Optional[str] = None,
        default_chat_id: Optional[str] = None,
        chat_for: Optional[Callable[[str], Optional[str]]] = None,
        timeout: float = 10.0,
    ):
        self.client = client
        self.token = token
        self.default_chat_id = default_chat_id
        self._chat_for = chat_for
        self.timeout = timeout
        logger.info("Notifier initialized.", extra={"token_set": bool(token), "chat_id_set": bool(default_chat_id)})

    def _chat_id(self, subject_id: str) -> Optional[str]:
        if self._chat_for is not None:
            chat_id = self._chat_for(subject_id)
            if chat_id:
                return chat_id
        return self.default_chat_id

    async def send(self, subject_id: str, notification: Notification) -> bool:
        msg = format_notification(subject_id, notification)
        chat_id = self._chat_id(subject_id)
        if not self.token or not chat_id:
            logger.warning("Telegram token or chat ID not set. Alert will be printed to console.", extra={"msg_preview": msg[:50]})
            print(f"\n--- ALERT ---\n{msg}\n------------\n")
            return True

        try:
            response = await self.client.post(
                f"https://api.telegram.org/bot{self.token}/sendMessage",
                json={"chat_id": chat_id, "text": msg, "parse_mode": "Markdown"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                f"HTTP error sending Telegram message: {exc.response.status_code} - {exc.response.text}",
                extra={"subject_id": subject_id, "response_status_code": exc.response.status_code, "msg_preview": msg[:50]},
            )
            return False
        except httpx.HTTPError as exc:
            logger.error(f"Error sending Telegram message: {exc}", extra={"subject_id": subject_id, "msg_preview": msg[:50]})
            return False
        logger.info("Telegram message sent successfully.", extra={"subject_id": subject_id, "response_status": response.status_code})
        return True


class CollectingNotifier:
    """In-memory sink used by the replay tool and dry runs."""

    def __init__(self):
        self.sent: List[tuple] = []

    async def send(self, subject_id: str, notification: Notification) -> bool:
        self.sent.append((subject_id, notification))
        return True
