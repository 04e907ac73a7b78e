import argparse
import asyncio
import json
import logging
import os
import signal
import sys
import time
from pathlib import Path

import httpx

from alerts.engine import AlertEngine
from alerts.rate_limit import RateLimiter
from alerts.scheduler import PollScheduler
from alerts.state import SubjectStateStore
from collectors.stocks import StockFeed
from collectors.torn import TornFetcher
from config import (
    ALERT_ENABLED,
    ALERT_THRESHOLDS,
    PERSISTENCE,
    POLL_INTERVALS,
    RATE_LIMIT,
    TELEGRAM,
    validate_config,
)
from directory import SubjectDirectory
from market.monitor import MarketMonitor
from market.storage import WatchedItemStore
from market.trades import TradeHistory
from notifier import TelegramNotifier
from persistence import DebouncedDocument, JsonDocumentStore

STOP_FILE = "STOP"


# --- Structured Logging Configuration START ---
class JSONFormatter(logging.Formatter):
    """
    Outputs log records as one JSON object per line.
    Includes timestamp, level, message, logger name, file and line number,
    plus any extra attributes passed to the log record.
    """
    def __init__(self, fmt=None, datefmt=None, style='%'):
        super().__init__(fmt, datefmt, style)
        self.datefmt = "%Y-%m-%dT%H:%M:%S%z" if datefmt is None else datefmt
        # Standard LogRecord attributes, never copied as extras
        self.standard_fields = (
            "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
            "module", "lineno", "funcName", "asctime", "msecs", "relativeCreated",
            "created", "thread", "threadName", "process", "processName", "taskName",
            "message", "exc_info", "exc_text", "stack_info",
        )

    def formatTime(self, record, datefmt=None):
        ct = self.converter(record.created)
        if datefmt is None:
            datefmt = self.datefmt
        if '%z' not in datefmt:
            return time.strftime(datefmt, ct) + time.strftime("%z", ct)
        return time.strftime(datefmt, ct)

    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "file": record.pathname.split('/')[-1] if record.pathname else None,
            "line": record.lineno,
        }
        for key, value in record.__dict__.items():
            if key not in self.standard_fields:
                try:
                    json.dumps(value)
                    log_record[key] = value
                except (TypeError, OverflowError):
                    log_record[key] = str(value)

        if record.exc_info:
            log_record['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_record)


logger = logging.getLogger("torn_sentinel")


def configure_logging(level: int = logging.INFO) -> None:
    # Every module logs under "torn_sentinel.*", so one handler here covers them all
    if logger.handlers:
        return
    logger.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    logger.info("Structured logging configured.")
# --- Structured Logging Configuration END ---


class Sentinel:
    """Wires the collectors, alert engine, schedulers and market monitor around one HTTP client."""

    def __init__(self, client: httpx.AsyncClient, data_dir: str = PERSISTENCE["data_dir"]):
        backend = JsonDocumentStore(data_dir)
        debounce = dict(min_interval=PERSISTENCE["debounce_seconds"], poll_interval=PERSISTENCE["flusher_poll_seconds"])
        self.documents = [
            DebouncedDocument(backend, "alert_state", **debounce),
            DebouncedDocument(backend, "market_alerts", **debounce),
            DebouncedDocument(backend, "trade_history", **debounce),
        ]
        state_doc, watch_doc, trade_doc = self.documents

        self.directory = SubjectDirectory(str(Path(data_dir) / "users.json"))
        self.notifier = TelegramNotifier(
            client, TELEGRAM["token"], TELEGRAM["chat_id"], chat_for=self.directory.chat_for, timeout=TELEGRAM["timeout"],
        )
        self.fetcher = TornFetcher(client)
        self.engine = AlertEngine(
            SubjectStateStore(state_doc),
            self.notifier,
            RateLimiter(RATE_LIMIT["max_alerts"], RATE_LIMIT["window_seconds"]),
            config=ALERT_THRESHOLDS,
            enabled=ALERT_ENABLED,
        )
        self.scheduler = PollScheduler(self.engine, self.fetcher, self.directory, enabled=ALERT_ENABLED)
        self.stock_feed = StockFeed(client, backend)
        self.trades = TradeHistory(trade_doc)
        self.market = MarketMonitor(
            WatchedItemStore(watch_doc), self.fetcher, self.stock_feed, self.trades, self.notifier, self.directory,
        )

    async def __aenter__(self) -> "Sentinel":
        for document in self.documents:
            await document.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        for document in self.documents:
            await document.__aexit__(exc_type, exc, tb)

    async def run_once(self) -> None:
        for cadence in POLL_INTERVALS:
            polled = await self.scheduler.run_cycle(cadence)
            logger.info(f"Cycle {cadence} finished.", extra={"polled": polled})
        await self.stock_feed.refresh(force=True)
        sent = await self.market.run_cycle()
        logger.info("Market cycle finished.", extra={"sent": sent})

    async def start(self) -> None:
        await self.scheduler.start()
        await self.stock_feed.start()
        await self.market.start()

    async def stop(self) -> None:
        await self.market.stop()
        await self.stock_feed.stop()
        await self.scheduler.stop()


async def _watch_stop_file(stop: asyncio.Event, path: str = STOP_FILE, poll_seconds: float = 1.0) -> None:
    while not stop.is_set():
        if os.path.exists(path):
            logger.warning("STOP file detected. Gracefully exiting...")
            os.remove(path)  # so it doesn't block future starts
            stop.set()
            return
        await asyncio.sleep(poll_seconds)


async def run(args: argparse.Namespace) -> int:
    async with httpx.AsyncClient() as client:
        async with Sentinel(client, data_dir=args.data_dir) as sentinel:
            if args.test_alert:
                subject_id, key = args.test_alert
                ok, error = await sentinel.engine.send_test_alert(subject_id, key)
                if not ok:
                    logger.error(f"Test alert failed: {error}", extra={"subject_id": subject_id, "alert_key": key})
                    return 1
                logger.info("Test alert sent.", extra={"subject_id": subject_id, "alert_key": key})
                return 0

            if args.once:
                await sentinel.run_once()
                logger.info("Finished execution in --once mode.")
                return 0

            stop = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, stop.set)
                except NotImplementedError:
                    pass  # Windows: KeyboardInterrupt still ends asyncio.run
            watcher = asyncio.create_task(_watch_stop_file(stop))

            await sentinel.start()
            logger.info("Monitoring started.", extra={"intervals": POLL_INTERVALS})
            try:
                await stop.wait()
            finally:
                watcher.cancel()
                try:
                    await watcher
                except asyncio.CancelledError:
                    pass
                await sentinel.stop()
            logger.info("Shutdown complete.")
            return 0


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Polls the game API and sends alerts.")
    parser.add_argument("--once", action="store_true", help="run every cadence once, then exit")
    parser.add_argument("--test-alert", nargs=2, metavar=("SUBJECT", "KEY"), help="send a sample alert and exit")
    parser.add_argument("--data-dir", default=PERSISTENCE["data_dir"])
    return parser.parse_args(argv)


def main(argv=None) -> int:
    configure_logging()
    args = parse_args(argv)
    try:
        validate_config()
        logger.info("Configuration validated successfully.")
    except Exception as e:
        logger.error("Configuration validation failed: %s", e, exc_info=True)
        print("FATAL: Configuration validation failed. Exiting.")
        return 1
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
