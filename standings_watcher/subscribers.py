"""
Subscriber management module for the Standings Watcher.

This module handles:
- Loading and saving the chats subscribed to standings updates
- Merging chat IDs supplied through configuration
- Adding and removing subscriptions from chat commands
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from standings_watcher.utils import (
    DEFAULT_SUBSCRIBERS_PATH,
    get_logger,
    safe_read_json,
    safe_write_json,
)


logger = get_logger("subscribers")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Subscriber:
    """Represents a chat subscribed to standings updates."""
    chat_id: int
    created_at: str
    active: bool = True

    def __post_init__(self):
        self.chat_id = int(self.chat_id)


def load_subscribers(
    filepath: str = DEFAULT_SUBSCRIBERS_PATH,
    active_only: bool = True
) -> List[Subscriber]:
    """
    Read the stored subscriptions.

    Entries without a usable chat_id are skipped with a warning.

    Args:
        filepath: Subscriptions document.
        active_only: Drop chats that have unsubscribed.

    Returns:
        Subscribers in file order; empty when the file is missing or malformed.
    """
    document = safe_read_json(filepath, default=None)

    if document is None:
        logger.info(f"No stored subscriptions at {filepath}")
        return []

    entries = document.get("subscribers") if isinstance(document, dict) else None
    if not isinstance(entries, list):
        logger.error(f"Ignoring {filepath}: 'subscribers' must be a list")
        return []

    result = []
    for entry in entries:
        try:
            subscriber = _parse_subscriber_entry(entry)
        except (TypeError, ValueError) as e:
            logger.warning(f"Skipping subscriber entry {entry!r}: {e}")
            continue

        if subscriber is None:
            continue
        if active_only and not subscriber.active:
            continue
        result.append(subscriber)

    logger.info(f"Loaded {len(result)} subscription(s) from {filepath}")
    return result


def _parse_subscriber_entry(entry: Any) -> Optional[Subscriber]:
    if not isinstance(entry, dict):
        return None

    chat_id = entry.get("chat_id")
    if chat_id is None:
        logger.warning("Subscriber entry has no chat_id")
        return None

    return Subscriber(
        chat_id=int(chat_id),
        created_at=entry.get("created_at") or _timestamp(),
        active=bool(entry.get("active", True))
    )


def save_subscribers(
    subscribers: List[Subscriber],
    filepath: str = DEFAULT_SUBSCRIBERS_PATH
) -> bool:
    """Persist every subscription, inactive ones included; False on write failure."""
    document = {
        "subscribers": [
            {"chat_id": s.chat_id, "created_at": s.created_at, "active": s.active}
            for s in subscribers
        ],
        "last_updated": _timestamp(),
        "version": "1.0"
    }

    if not safe_write_json(filepath, document):
        logger.error(f"Could not store subscriptions in {filepath}")
        return False

    logger.debug(f"Stored {len(subscribers)} subscription(s) in {filepath}")
    return True


class SubscriberRegistry:
    """
    Thread-safe set of subscribed chats backed by a JSON file.

    The bot thread adds and removes chats while the polling task reads the
    active set, so every access goes through one lock.
    """

    def __init__(
        self,
        filepath: Optional[str] = DEFAULT_SUBSCRIBERS_PATH,
        initial_chat_ids: Optional[Iterable[int]] = None
    ):
        self.filepath = filepath
        self._lock = threading.Lock()
        self._subscribers: Dict[int, Subscriber] = {}

        if filepath:
            for subscriber in load_subscribers(filepath, active_only=False):
                self._subscribers[subscriber.chat_id] = subscriber

        for chat_id in initial_chat_ids or []:
            if int(chat_id) not in self._subscribers:
                self._subscribers[int(chat_id)] = Subscriber(chat_id=chat_id, created_at=_timestamp())

    def active_chat_ids(self) -> List[int]:
        with self._lock:
            return [s.chat_id for s in self._subscribers.values() if s.active]

    def is_subscribed(self, chat_id: int) -> bool:
        with self._lock:
            subscriber = self._subscribers.get(int(chat_id))
            return subscriber is not None and subscriber.active

    def add(self, chat_id: int) -> bool:
        """
        Subscribe a chat (or reactivate it).

        Returns:
            True if the chat was not already an active subscriber.
        """
        with self._lock:
            existing = self._subscribers.get(int(chat_id))
            if existing and existing.active:
                return False

            if existing:
                existing.active = True
            else:
                self._subscribers[int(chat_id)] = Subscriber(chat_id=chat_id, created_at=_timestamp())

            logger.info(f"Added subscriber: {chat_id} (total: {self._active_count()})")
            self._save()
            return True

    def remove(self, chat_id: int) -> bool:
        """
        Deactivate a chat's subscription.

        Returns:
            True if the chat was an active subscriber.
        """
        with self._lock:
            existing = self._subscribers.get(int(chat_id))
            if not existing or not existing.active:
                return False

            existing.active = False
            logger.info(f"Removed subscriber: {chat_id} (total: {self._active_count()})")
            self._save()
            return True

    def _active_count(self) -> int:
        return sum(1 for s in self._subscribers.values() if s.active)

    def _save(self) -> None:
        if self.filepath:
            save_subscribers(list(self._subscribers.values()), self.filepath)
