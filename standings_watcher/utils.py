"""
Utility functions for the Standings Watcher.

This module provides:
- Central logging configuration
- Safe JSON read/write helpers
- Monitor configuration loading and validation
- Shared text helpers used across modules
"""

import json
import logging
import os
import re
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse


# Default configuration paths
DEFAULT_CONFIG_PATH = "config/standings.json"
DEFAULT_STATE_PATH = "data/state_cache.json"
DEFAULT_SUBSCRIBERS_PATH = "data/subscribers.json"

DEFAULT_STANDINGS_URL = (
    "https://s3.chess-results.com/tnr1246747.aspx"
    "?lan=1&art=9&fed=LAT&turdet=YES&flag=30&snr=61&SNode=S0"
)
DEFAULT_POLL_INTERVAL = 15.0  # seconds
DEFAULT_REQUEST_TIMEOUT = 30.0  # seconds
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE = 2.0

# Browser-like headers; the standings host serves a reduced page to bots
DEFAULT_HTTP_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
}


class MonitorConfig:
    """Runtime configuration for a single monitored standings page."""

    def __init__(
        self,
        endpoint: str = DEFAULT_STANDINGS_URL,
        http_headers: Optional[Dict[str, str]] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        state_path: str = DEFAULT_STATE_PATH,
        subscribers_path: str = DEFAULT_SUBSCRIBERS_PATH,
        telegram_token: Optional[str] = None,
        chat_ids: Optional[List[int]] = None,
        dry_run: bool = False
    ):
        self.endpoint = endpoint
        self.http_headers = dict(DEFAULT_HTTP_HEADERS)
        if http_headers:
            self.http_headers.update(http_headers)
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.poll_interval = poll_interval
        self.backoff_base = backoff_base
        self.state_path = state_path
        self.subscribers_path = subscribers_path
        self.telegram_token = telegram_token
        self.chat_ids = list(chat_ids or [])
        self.dry_run = dry_run

    def __repr__(self) -> str:
        return (
            f"MonitorConfig(endpoint={self.endpoint}, poll_interval={self.poll_interval}, "
            f"max_retries={self.max_retries}, dry_run={self.dry_run})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (the bot token is masked)."""
        return {
            "endpoint": self.endpoint,
            "http_headers": dict(self.http_headers),
            "request_timeout": self.request_timeout,
            "max_retries": self.max_retries,
            "poll_interval": self.poll_interval,
            "backoff_base": self.backoff_base,
            "state_path": self.state_path,
            "subscribers_path": self.subscribers_path,
            "telegram_token": "***" if self.telegram_token else None,
            "chat_ids": list(self.chat_ids),
            "dry_run": self.dry_run,
        }


def load_monitor_config(config_path: Optional[str] = None) -> MonitorConfig:
    """
    Load the monitor configuration from a JSON file and the environment.

    Priority (highest first):
    1. Individual environment variables (STANDINGS_URL, POLL_INTERVAL, ...)
    2. STANDINGS_CONFIG_PATH environment variable (file path)
    3. Provided config_path parameter
    4. Default config file path
    5. Built-in defaults

    Args:
        config_path: Optional path to a JSON configuration file.

    Returns:
        MonitorConfig instance.
    """
    logger = get_logger("utils")

    env_path = os.environ.get("STANDINGS_CONFIG_PATH", "").strip()
    file_path = env_path or config_path or DEFAULT_CONFIG_PATH

    data = safe_read_json(file_path, default={})
    if not isinstance(data, dict):
        logger.warning(f"Unexpected config format in {file_path}, ignoring file")
        data = {}
    elif data:
        logger.info(f"Loaded monitor config from {file_path}")

    headers = data.get("http_headers")
    if not isinstance(headers, dict):
        headers = None

    config = MonitorConfig(
        endpoint=_first_non_empty(
            os.environ.get("STANDINGS_URL"), data.get("endpoint"), DEFAULT_STANDINGS_URL
        ),
        http_headers=headers,
        request_timeout=_parse_number(
            os.environ.get("REQUEST_TIMEOUT", data.get("request_timeout")),
            DEFAULT_REQUEST_TIMEOUT, "REQUEST_TIMEOUT"
        ),
        max_retries=int(_parse_number(
            os.environ.get("MAX_RETRIES", data.get("max_retries")),
            DEFAULT_MAX_RETRIES, "MAX_RETRIES"
        )),
        poll_interval=_parse_number(
            os.environ.get("POLL_INTERVAL", data.get("poll_interval")),
            DEFAULT_POLL_INTERVAL, "POLL_INTERVAL"
        ),
        backoff_base=_parse_number(
            os.environ.get("BACKOFF_BASE", data.get("backoff_base")),
            DEFAULT_BACKOFF_BASE, "BACKOFF_BASE"
        ),
        state_path=_first_non_empty(
            os.environ.get("STATE_PATH"), data.get("state_path"), DEFAULT_STATE_PATH
        ),
        subscribers_path=_first_non_empty(
            os.environ.get("SUBSCRIBERS_PATH"), data.get("subscribers_path"),
            DEFAULT_SUBSCRIBERS_PATH
        ),
        telegram_token=get_env_var("TELEGRAM_BOT_TOKEN", required=False)
        or data.get("telegram_token"),
        chat_ids=parse_chat_ids(
            os.environ.get("TELEGRAM_CHAT_IDS", data.get("chat_ids", ""))
        ),
        dry_run=parse_bool(os.environ.get("DRY_RUN", data.get("dry_run", False))),
    )

    logger.debug(f"Monitor configuration: {config.to_dict()}")
    return config


def validate_monitor_config(config: MonitorConfig) -> List[str]:
    """
    Validate a monitor configuration and return any warnings.

    Args:
        config: MonitorConfig to validate.

    Returns:
        List of warning messages (empty if all valid).
    """
    warnings = []

    parsed = urlparse(config.endpoint or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        warnings.append(f"Endpoint is not a valid http(s) URL: {config.endpoint!r}")

    if config.poll_interval <= 0:
        warnings.append(f"Poll interval must be positive, got {config.poll_interval}")

    if config.request_timeout <= 0:
        warnings.append(f"Request timeout must be positive, got {config.request_timeout}")

    if config.max_retries < 0:
        warnings.append(f"Max retries must not be negative, got {config.max_retries}")

    if not config.telegram_token and not config.dry_run:
        warnings.append("TELEGRAM_BOT_TOKEN is not set; notifications are disabled")

    return warnings


def _first_non_empty(*values: Any) -> Any:
    """Return the first value that is not None or a blank string."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value.strip() if isinstance(value, str) else value
    return None


def _parse_number(value: Any, default: float, name: str) -> float:
    """Parse a numeric setting, falling back to the default on bad input."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return default

    try:
        return float(value)
    except (TypeError, ValueError):
        get_logger("utils").warning(f"Invalid value for {name}: {value!r}, using {default}")
        return default


def parse_chat_ids(value: Any) -> List[int]:
    """
    Parse chat IDs from a comma-separated string or a list.

    Entries that are not integers are skipped.

    Args:
        value: "123,-456" style string, list of ids, or None.

    Returns:
        List of integer chat IDs, de-duplicated in input order.
    """
    if not value:
        return []

    if isinstance(value, str):
        raw_items = value.split(",")
    elif isinstance(value, (list, tuple)):
        raw_items = list(value)
    else:
        raw_items = [value]

    chat_ids: List[int] = []
    for item in raw_items:
        try:
            chat_id = int(str(item).strip())
        except ValueError:
            get_logger("utils").warning(f"Ignoring invalid chat id: {item!r}")
            continue
        if chat_id not in chat_ids:
            chat_ids.append(chat_id)

    return chat_ids


def parse_bool(value: Any) -> bool:
    """Interpret common truthy strings ("true", "1", "yes")."""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure stdout logging for the watcher and return its package logger.

    Args:
        level: Level name such as "DEBUG" or "WARNING"; unknown names mean INFO.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    logger = logging.getLogger("standings_watcher")
    logger.setLevel(log_level)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Module logger under the standings_watcher namespace, e.g. get_logger("fetch")."""
    return logging.getLogger(f"standings_watcher.{name}")


def safe_read_json(filepath: str, default: Optional[Any] = None) -> Any:
    """
    Read a JSON document, never raising.

    Args:
        filepath: Document to read.
        default: Returned when the file is absent, unreadable or not JSON.

    Returns:
        The decoded document, or default.
    """
    logger = get_logger("utils")
    path = Path(filepath)

    if not path.exists():
        logger.debug(f"No file at {filepath}")
        return default

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Could not decode {filepath}: {e}")
        return default
    except OSError as e:
        logger.error(f"Could not read {filepath}: {e}")
        return default

    logger.debug(f"Read {filepath}")
    return data


def safe_write_json(filepath: str, data: Any, indent: int = 2) -> bool:
    """
    Write a JSON document atomically.

    The document is written to a temporary file in the target directory
    and moved into place, so a reader sees either the old or the new file.

    Args:
        filepath: Destination path; missing parent directories are created.
        data: JSON-serializable value.
        indent: Indentation of the written document.

    Returns:
        False if the document could not be written.
    """
    logger = get_logger("utils")
    path = Path(filepath)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(suffix=".json", prefix="standings_", dir=path.parent)
    except OSError as e:
        logger.error(f"Cannot prepare {filepath} for writing: {e}")
        return False

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
        shutil.move(temp_path, filepath)
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to write {filepath}: {e}")
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        return False

    logger.debug(f"Wrote {filepath}")
    return True


def get_env_var(name: str, required: bool = True, default: Optional[str] = None) -> Optional[str]:
    """
    Read a stripped environment variable; blank counts as unset.

    Raises:
        ValueError: If the variable is unset and required.
    """
    value = (os.environ.get(name) or "").strip()

    if not value:
        if required:
            raise ValueError(f"Environment variable {name} must be set")
        return default

    return value


def sanitize_text(text: Optional[str]) -> str:
    """Collapse whitespace runs, non-breaking spaces included, and strip the ends."""
    if not text:
        return ""

    cleaned = re.sub(r"\s+", " ", text.replace("\xa0", " "))
    return cleaned.strip()


def truncate_text(text: Optional[str], max_length: int) -> str:
    """Shorten text to max_length characters, marking the cut with '...'."""
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[: max(0, max_length - 3)] + "..."
