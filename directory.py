import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger("torn_sentinel.directory")


@dataclass
class Subject:
    credential: Optional[str]
    extra: Dict = field(default_factory=dict)


class SubjectDirectory:
    """Registered subjects, read from `{id: {"apiKey": ..., ...}}` on every call."""

    def __init__(self, path: str = "data/users.json"):
        self.path = Path(path)

    def list_subjects(self) -> Dict[str, Subject]:
        if not self.path.exists():
            return {}
        try:
            users = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error(f"Error loading users file: {exc}")
            return {}
        if not isinstance(users, dict):
            return {}
        subjects = {}
        for subject_id, record in users.items():
            if not isinstance(record, dict):
                continue
            extra = {k: v for k, v in record.items() if k != "apiKey"}
            subjects[str(subject_id)] = Subject(credential=record.get("apiKey"), extra=extra)
        return subjects

    def chat_for(self, subject_id: str) -> Optional[str]:
        subject = self.list_subjects().get(subject_id)
        if subject is None:
            return None
        return subject.extra.get("chatId")
