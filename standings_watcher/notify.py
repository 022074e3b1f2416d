"""
Notify module for the Standings Watcher.

This module formats standings and change events as chat messages and
delivers them through the Telegram Bot API.

Telegram limits a message to 4096 characters; longer texts are split on
line boundaries before sending.
"""

import json
import time
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import requests

from standings_watcher.compare import has_significant_changes
from standings_watcher.models import (
    BoardChanged,
    ChangeEvent,
    DataLost,
    InitialLoad,
    NewPlayer,
    PlayerCountChanged,
    Record,
    ResultChanged,
    Snapshot,
)
from standings_watcher.utils import get_logger, truncate_text


# Module logger
logger = get_logger("notify")

# Telegram API configuration
TELEGRAM_API_BASE = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4000
PARSE_MODE = "Markdown"

# Rate limit retry configuration
MAX_RATE_LIMIT_RETRIES = 3
RATE_LIMIT_WAIT_SECONDS = 30
DELAY_BETWEEN_CHUNKS = 0.5  # seconds

CHANGE_ICONS = {
    InitialLoad.kind: "🎯",
    DataLost.kind: "⚠️",
    NewPlayer.kind: "➕",
    ResultChanged.kind: "🏆",
    BoardChanged.kind: "🔢",
    PlayerCountChanged.kind: "👥",
}

ERROR_MESSAGES = {
    "network_error": (
        "❌ *Network Error*\n\n"
        "Unable to connect to the tournament server. Please try again later."
    ),
    "parsing_error": (
        "❌ *Parsing Error*\n\n"
        "Unable to parse tournament data. The website structure may have changed."
    ),
    "timeout_error": (
        "⏰ *Timeout Error*\n\n"
        "The request took too long to complete. Please try again later."
    ),
}


class TelegramAPIError(Exception):
    """Custom exception for Telegram Bot API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[Dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


# =============================================================================
# Message formatting
# =============================================================================


def format_time(value: Optional[datetime]) -> str:
    if value is None:
        return "Unknown"
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")


def format_score(score: Optional[float]) -> str:
    """Render points without a trailing .0 for whole numbers."""
    if score is None:
        return "0"
    if float(score).is_integer():
        return str(int(score))
    return str(score)


def format_player_row(record: Record) -> str:
    board = (record.board or "").ljust(2)
    name = truncate_text(record.name, 30).ljust(30)
    club = truncate_text(record.affiliation or "", 22).ljust(22)
    points = format_score(record.score).ljust(3)
    result = (record.outcome or "").ljust(6)

    return f"{board} | {name} | {club} | {points} | {result}".rstrip()


def format_table(snapshot: Optional[Snapshot]) -> str:
    """
    Format the full standings table as a Markdown message.

    Args:
        snapshot: Current snapshot.

    Returns:
        Message text.
    """
    if snapshot is None or snapshot.is_empty:
        return "❌ No tournament data available"

    lines = [
        f"🏆 *{snapshot.source_name}*",
        f"📅 Last updated: {format_time(snapshot.captured_at)}",
        f"👥 Players: {snapshot.player_count}",
        "",
        "```",
        "Bd | Player Name                    | Club/City              | Pts | Result",
        "---|--------------------------------|------------------------|-----|--------",
    ]

    lines.extend(format_player_row(record) for record in snapshot.records)
    lines.append("```")

    return "\n".join(lines)


def format_changes(changes: Sequence[ChangeEvent]) -> str:
    """
    Format change events as a Markdown summary.

    Args:
        changes: Ordered change events.

    Returns:
        Message text.
    """
    if not changes:
        return "No changes detected"

    lines = ["📊 *Tournament Updates:*", ""]

    for change in changes:
        icon = CHANGE_ICONS.get(change.kind, "ℹ️")
        lines.append(f"{icon} {change.describe()}")

    return "\n".join(lines)


def format_status_response(snapshot: Optional[Snapshot], paused: bool = False) -> str:
    """Short status reply for the status command."""
    if snapshot is None or snapshot.is_empty:
        return (
            "❌ *Status: No Data*\n\n"
            "Unable to fetch tournament data. Please try again later."
        )

    state = "Paused" if paused else "Active"
    icon = "⏸️" if paused else "✅"

    return "\n".join([
        f"{icon} *Status: {state}*",
        f"🏆 Tournament: *{snapshot.source_name}*",
        f"📅 Last updated: {format_time(snapshot.captured_at)}",
        f"👥 Players: {snapshot.player_count}",
    ])


def format_error_message(error_type: str, details: Optional[str] = None) -> str:
    if error_type in ERROR_MESSAGES:
        return ERROR_MESSAGES[error_type]
    if details:
        return f"❌ *Unknown Error*\n\nAn unexpected error occurred: {details}"
    return "❌ *Error*\n\nSomething went wrong. Please try again later."


def split_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """
    Split a long message into chunks on line boundaries.

    A single line longer than max_length is cut into max_length pieces.

    Args:
        text: Message text.
        max_length: Maximum chunk length.

    Returns:
        List of chunks (a single element when the text already fits).
    """
    if len(text) <= max_length:
        return [text]

    chunks: List[str] = []
    current = ""

    for line in text.split("\n"):
        while len(line) > max_length:
            if current.strip():
                chunks.append(current.strip("\n"))
                current = ""
            chunks.append(line[:max_length])
            line = line[max_length:]

        if current and len(current) + len(line) + 1 > max_length:
            chunks.append(current.strip("\n"))
            current = ""
        current += line + "\n"

    if current.strip():
        chunks.append(current.strip("\n"))

    return chunks


# =============================================================================
# Telegram Bot API
# =============================================================================


def create_telegram_session() -> requests.Session:
    """
    Create a requests session for the Telegram Bot API.

    Returns:
        Configured requests.Session instance.
    """
    session = requests.Session()
    session.headers.update({
        "Accept": "application/json",
        "User-Agent": "StandingsWatcher/1.0"
    })
    return session


def api_url(token: str, method: str) -> str:
    return f"{TELEGRAM_API_BASE}/bot{token}/{method}"


def check_rate_limit(response: requests.Response) -> Tuple[bool, int]:
    """
    Check if a response indicates rate limiting.

    Args:
        response: Response object from the Bot API.

    Returns:
        Tuple of (is_rate_limited, seconds_to_wait).
    """
    if response.status_code != 429:
        return False, 0

    try:
        data = response.json()
        retry_after = int(data.get("parameters", {}).get("retry_after", RATE_LIMIT_WAIT_SECONDS))
        return True, max(0, retry_after)
    except (ValueError, TypeError, AttributeError):
        return True, RATE_LIMIT_WAIT_SECONDS


def call_api(
    session: requests.Session,
    token: str,
    method: str,
    payload: Optional[Dict[str, Any]] = None,
    timeout: float = 30
) -> Any:
    """
    Call a Bot API method and return its "result" field.

    Args:
        session: Configured requests session.
        token: Bot token.
        method: API method name, e.g. "sendMessage".
        payload: JSON body.
        timeout: Request timeout in seconds.

    Returns:
        The "result" value of the API response.

    Raises:
        TelegramAPIError: If the call fails.
    """
    url = api_url(token, method)

    for attempt in range(MAX_RATE_LIMIT_RETRIES):
        try:
            response = session.post(url, json=payload or {}, timeout=timeout)

            is_limited, wait_time = check_rate_limit(response)
            if is_limited:
                if attempt < MAX_RATE_LIMIT_RETRIES - 1:
                    logger.warning(f"Rate limited, waiting {wait_time}s (attempt {attempt + 1})")
                    time.sleep(min(wait_time, RATE_LIMIT_WAIT_SECONDS))
                    continue
                raise TelegramAPIError("Telegram API rate limit exceeded", status_code=429)

            try:
                data = response.json()
            except (json.JSONDecodeError, ValueError):
                data = {}

            if response.status_code == 200 and data.get("ok"):
                return data.get("result")

            if response.status_code == 401:
                raise TelegramAPIError(
                    "Telegram authentication failed. Check TELEGRAM_BOT_TOKEN.",
                    status_code=401
                )

            description = data.get("description") or f"HTTP {response.status_code}"
            raise TelegramAPIError(
                f"Telegram API error in {method}: {description}",
                status_code=response.status_code,
                response=data
            )

        except requests.exceptions.Timeout:
            if attempt < MAX_RATE_LIMIT_RETRIES - 1:
                logger.warning(f"Request timeout, retrying (attempt {attempt + 1})")
                time.sleep(5)
                continue
            raise TelegramAPIError("Telegram API request timeout")

        except requests.exceptions.RequestException as e:
            raise TelegramAPIError(f"Telegram API request failed: {e}")

    raise TelegramAPIError(f"Failed to call {method} after retries")


def send_message(
    session: requests.Session,
    token: str,
    chat_id: int,
    text: str,
    parse_mode: Optional[str] = PARSE_MODE
) -> None:
    """
    Send a message to one chat, splitting it if needed.

    Raises:
        TelegramAPIError: If sending fails.
    """
    chunks = split_message(text)

    for index, chunk in enumerate(chunks):
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": chunk}
        if parse_mode:
            payload["parse_mode"] = parse_mode

        call_api(session, token, "sendMessage", payload)

        if index < len(chunks) - 1:
            time.sleep(DELAY_BETWEEN_CHUNKS)

    logger.debug(f"Message sent to chat {chat_id} ({len(chunks)} chunk(s))")


def send_to_subscribers(
    session: requests.Session,
    token: str,
    chat_ids: Iterable[int],
    text: str
) -> List[int]:
    """
    Send a message to every subscribed chat.

    A failure for one chat is logged and does not stop delivery to the rest.

    Returns:
        Chat IDs the message was delivered to.
    """
    delivered = []
    chat_ids = list(chat_ids)

    logger.info(f"Sending notification to {len(chat_ids)} subscriber(s)")

    for chat_id in chat_ids:
        try:
            send_message(session, token, chat_id, text)
            delivered.append(chat_id)
        except TelegramAPIError as e:
            logger.error(f"Failed to send notification to chat {chat_id}: {e}")

    return delivered


def notify_changes(
    changes: Sequence[ChangeEvent],
    snapshot: Snapshot,
    chat_ids: Iterable[int],
    token: Optional[str],
    session: Optional[requests.Session] = None,
    dry_run: bool = False
) -> List[str]:
    """
    Notify subscribers about detected changes.

    Sends the change summary and, for significant changes, the full table.

    Args:
        changes: Change events from the latest cycle.
        snapshot: Snapshot the changes lead to.
        chat_ids: Subscribed chats.
        token: Bot token; nothing is sent without one.
        session: Session to use (created and closed if None).
        dry_run: If True, log the messages instead of sending them.

    Returns:
        The messages that were (or in dry-run mode would have been) sent.
    """
    if not changes:
        logger.debug("No changes to notify about")
        return []

    messages = [format_changes(changes)]
    if has_significant_changes(changes):
        messages.append(format_table(snapshot))

    chat_ids = list(chat_ids)

    if dry_run:
        for message in messages:
            logger.info(f"[DRY RUN] Would send to {len(chat_ids)} chat(s):\n{message}")
        return messages

    if not token:
        logger.warning("TELEGRAM_BOT_TOKEN not configured, skipping notification")
        return []

    if not chat_ids:
        logger.info("No subscribers to notify")
        return []

    owns_session = session is None
    if owns_session:
        session = create_telegram_session()

    try:
        for message in messages:
            send_to_subscribers(session, token, chat_ids, message)
    finally:
        if owns_session:
            session.close()

    return messages
