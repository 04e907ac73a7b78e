"""
Centralized tunables for the alert scheduler, engine and market monitor.
Environment overrides (and .env) are read at import time.
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


ALERT_ENABLED = os.environ.get("ALERT_ENABLED", "true").lower() != "false"

POLL_INTERVALS = {
    "FAST": 60,        # bars, travel, profile, messages, events
    "MEDIUM": 5 * 60,  # education, financial
    "SLOW": 10 * 60,   # job
}

BACKOFF = {"base_seconds": 30, "max_seconds": 5 * 60}

RATE_LIMIT = {
    "max_alerts": _env_int("ALERT_MAX_PER_10MIN", 3),
    "window_seconds": 10 * 60,
}

ALERT_THRESHOLDS = {
    "cash_drop_threshold": _env_int("ALERT_CASH_DROP_THRESHOLD", 500_000),
    "unpaid_fees_delta_min": _env_int("ALERT_UNPAID_FEES_DELTA_MIN", 100_000),
}

PERSISTENCE = {
    "data_dir": os.environ.get("SENTINEL_DATA_DIR", "data"),
    "debounce_seconds": 5.0,
    "flusher_poll_seconds": 1.0,
}

MARKET_MONITOR = {
    "arm_seconds": 180,
    "low_stock_threshold": 50,
    "low_stock_throttle_seconds": 5 * 60,
    "purchase_window_seconds": 5 * 60,
    "travel_cache_seconds": 30,
}

STOCK_FEED = {
    "url": "https://yata.yt/api/v1/travel/export/",
    "refresh_seconds": _env_int("YATA_FETCH_INTERVAL", 30),
    "hard_ttl_seconds": 10 * 60,
    "timeout": 10.0,
}

TORN_API = {
    "base_url": "https://api.torn.com",
    "timeout": 10.0,
    "max_calls_per_minute": 100,
    "warn_calls_per_minute": 80,
}

HTTP_RETRY = {"attempts": 3, "backoff_seconds": 2.0, "jitter_seconds": 1.0}

TELEGRAM = {
    "token": os.environ.get("TELEGRAM_BOT_TOKEN"),
    "chat_id": os.environ.get("TELEGRAM_CHAT_ID"),
    "timeout": 10.0,
}


def validate_config() -> None:
    for name, seconds in POLL_INTERVALS.items():
        if seconds <= 0:
            raise ValueError(f"POLL_INTERVALS['{name}']: must be > 0")
    if BACKOFF["base_seconds"] <= 0:
        raise ValueError("BACKOFF['base_seconds']: must be > 0")
    if BACKOFF["base_seconds"] > BACKOFF["max_seconds"]:
        raise ValueError("BACKOFF: base_seconds must be <= max_seconds")
    if RATE_LIMIT["max_alerts"] <= 0:
        raise ValueError("RATE_LIMIT['max_alerts']: must be > 0")
    if RATE_LIMIT["window_seconds"] <= 0:
        raise ValueError("RATE_LIMIT['window_seconds']: must be > 0")
    for k, v in ALERT_THRESHOLDS.items():
        if not isinstance(v, int) or v < 0:
            raise ValueError(f"ALERT_THRESHOLDS['{k}']: must be a non-negative integer")
    if PERSISTENCE["debounce_seconds"] < 0:
        raise ValueError("PERSISTENCE['debounce_seconds']: must be >= 0")
    if not 0 < MARKET_MONITOR["arm_seconds"] <= 3600:
        raise ValueError("MARKET_MONITOR['arm_seconds']: must be in (0, 3600]")
    if MARKET_MONITOR["low_stock_threshold"] <= 0:
        raise ValueError("MARKET_MONITOR['low_stock_threshold']: must be > 0")
    if STOCK_FEED["refresh_seconds"] <= 0:
        raise ValueError("STOCK_FEED['refresh_seconds']: must be > 0")
