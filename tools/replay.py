"""Replay harness: feeds recorded payload frames through a real AlertEngine for offline tuning.

Frames are JSON lines: {"subject": "123", "group": "bars,cooldowns", "ts": 1700000000, "payload": {...}}
Time is taken from the frames, so cooldowns and the rate limit behave as they did live.
"""

import argparse
import asyncio
import json
import sys
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from alerts.engine import AlertEngine
from alerts.rate_limit import RateLimiter
from alerts.state import SubjectStateStore
from config import ALERT_THRESHOLDS, RATE_LIMIT
from notifier import CollectingNotifier
from persistence import DebouncedDocument, MemoryDocumentStore


@dataclass
class ReplayFrame:
    subject_id: str
    data_group: str
    payload: Dict
    ts: float


@dataclass
class ReplayMetrics:
    frames: int
    alerts: int
    subjects: int
    by_title: Dict[str, int] = field(default_factory=dict)


class FrameClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def load_frames(path: str) -> List[ReplayFrame]:
    frames: List[ReplayFrame] = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        raw = json.loads(line)
        frames.append(
            ReplayFrame(
                subject_id=str(raw["subject"]),
                data_group=raw["group"],
                payload=raw.get("payload") or {},
                ts=float(raw["ts"]),
            )
        )
    return frames


async def replay(
    frames: Iterable[ReplayFrame],
    max_alerts: int = RATE_LIMIT["max_alerts"],
    window_seconds: float = RATE_LIMIT["window_seconds"],
    config: Optional[Dict] = None,
):
    """Returns (metrics, notifier); notifier.sent holds every notification in order."""
    clock = FrameClock()
    document = DebouncedDocument(MemoryDocumentStore(), "alert_state", clock=clock)
    notifier = CollectingNotifier()
    engine = AlertEngine(
        SubjectStateStore(document, clock=clock),
        notifier,
        RateLimiter(max_alerts, window_seconds, clock=clock),
        config=config if config is not None else ALERT_THRESHOLDS,
        clock=clock,
    )

    count = 0
    subjects = set()
    for frame in sorted(frames, key=lambda f: f.ts):
        clock.now = frame.ts
        await engine.evaluate(frame.subject_id, frame.payload, frame.data_group)
        subjects.add(frame.subject_id)
        count += 1

    by_title = Counter(n.title for _, n in notifier.sent)
    return ReplayMetrics(count, len(notifier.sent), len(subjects), dict(by_title)), notifier


def summarize(metrics: ReplayMetrics) -> dict:
    return {
        "frames": metrics.frames,
        "alerts": metrics.alerts,
        "subjects": metrics.subjects,
        "by_title": metrics.by_title,
    }


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Replay recorded payloads through the alert engine.")
    parser.add_argument("frames", help="JSONL file of recorded frames")
    parser.add_argument("--max-alerts", type=int, default=RATE_LIMIT["max_alerts"])
    parser.add_argument("--verbose", action="store_true", help="print every notification")
    args = parser.parse_args(argv)

    metrics, notifier = asyncio.run(replay(load_frames(args.frames), max_alerts=args.max_alerts))
    if args.verbose:
        for subject_id, notification in notifier.sent:
            print(f"{subject_id}: {notification.emoji} {notification.title}")
    print(json.dumps(summarize(metrics), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
