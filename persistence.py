import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Callable, Dict, Optional

logger = logging.getLogger("torn_sentinel.persistence")


class JsonDocumentStore:
    """One JSON document per namespace, stored as <directory>/<namespace>.json."""

    def __init__(self, directory: str = "data"):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, namespace: str) -> Path:
        return self.directory / f"{namespace}.json"

    def load(self, namespace: str) -> Dict:
        """Loads a document; missing or unreadable files yield an empty one."""
        path = self._path(namespace)
        if not path.exists():
            logger.info("Document not found, starting empty.", extra={"namespace": namespace})
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("Document is not valid JSON, resetting. Error: %s", exc, extra={"namespace": namespace})
            self._rotate_bad_document(path)
            return {}
        except OSError as exc:
            logger.warning("Error reading document, resetting: %s", exc, extra={"namespace": namespace})
            return {}
        if not isinstance(data, dict):
            logger.warning("Document root is not an object, resetting.", extra={"namespace": namespace})
            self._rotate_bad_document(path)
            return {}
        logger.info("Document loaded.", extra={"namespace": namespace, "entries": len(data)})
        return data

    def save(self, namespace: str, data: Dict) -> None:
        self._path(namespace).write_text(json.dumps(data, indent=2), encoding="utf-8")

    def _rotate_bad_document(self, path: Path) -> None:
        backup_path = path.with_suffix(path.suffix + ".bak")
        try:
            path.rename(backup_path)
            logger.info(f"Backed up corrupted document to '{backup_path.name}'")
        except OSError as exc:
            logger.error(f"Failed to back up corrupted document '{path.name}': {exc}", exc_info=True)


class MemoryDocumentStore:
    """Non-durable backend for replays and dry runs. Saves go through JSON like the file store."""

    def __init__(self):
        self.documents: Dict[str, str] = {}

    def load(self, namespace: str) -> Dict:
        raw = self.documents.get(namespace)
        return json.loads(raw) if raw else {}

    def save(self, namespace: str, data: Dict) -> None:
        self.documents[namespace] = json.dumps(data)


class DebouncedDocument:
    """
    In-memory JSON document with time-boxed writes.

    `touch()` marks the document dirty and writes it if the last write is at
    least `min_interval` seconds old. A background flusher (entered with
    `async with`) picks up trailing changes, and leaving the context always
    forces a final write. The in-memory copy stays authoritative when a write
    fails.
    """

    def __init__(
        self,
        backend: JsonDocumentStore,
        namespace: str,
        min_interval: float = 5.0,
        poll_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.namespace = namespace
        self.min_interval = min_interval
        self.poll_interval = poll_interval
        self._clock = clock
        self.data: Dict = backend.load(namespace)
        self._dirty = False
        self._last_write: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def dirty(self) -> bool:
        return self._dirty

    def touch(self) -> None:
        self._dirty = True
        self.flush_if_due()

    def flush_if_due(self) -> bool:
        if not self._dirty:
            return False
        if self._last_write is not None and self._clock() - self._last_write < self.min_interval:
            return False
        return self.flush()

    def flush(self, force: bool = False) -> bool:
        """Writes the document now. Returns True when the write succeeded."""
        if not self._dirty and not force:
            return False
        try:
            self.backend.save(self.namespace, self.data)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to save document: %s", exc, extra={"namespace": self.namespace})
            return False
        self._dirty = False
        self._last_write = self._clock()
        return True

    async def _flusher(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            self.flush_if_due()

    async def __aenter__(self) -> "DebouncedDocument":
        if self._task is None:
            self._task = asyncio.create_task(self._flusher())
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self.flush(force=True):
            logger.info("Document saved on shutdown.", extra={"namespace": self.namespace})
