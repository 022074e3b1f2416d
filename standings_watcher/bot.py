"""
Chat command handling for the Standings Watcher.

CommandProcessor turns an incoming message into reply texts; BotPoller
long-polls the Telegram Bot API for messages and sends the replies.
"""

import threading
from typing import Any, Dict, List, Optional

import requests

from standings_watcher.monitor import StandingsMonitor
from standings_watcher.notify import (
    TelegramAPIError,
    call_api,
    create_telegram_session,
    format_error_message,
    format_status_response,
    format_table,
    send_message,
)
from standings_watcher.subscribers import SubscriberRegistry
from standings_watcher.utils import get_logger


logger = get_logger("bot")

LONG_POLL_TIMEOUT = 30  # seconds
ERROR_BACKOFF_SECONDS = 5.0

HELP_TEXT = "\n".join([
    "*Available commands:*",
    "• `status` - Get current tournament table",
    "• `subscribe` - Subscribe to tournament updates",
    "• `unsubscribe` - Stop receiving updates",
    "• `pause` - Temporarily stop monitoring",
    "• `resume` - Resume monitoring",
    "• `/help` - Show this message",
])


class CommandProcessor:
    """Maps chat commands to replies using the monitor and subscriber registry."""

    def __init__(self, monitor: StandingsMonitor, subscribers: SubscriberRegistry):
        self.monitor = monitor
        self.subscribers = subscribers

    def handle(self, chat_id: int, text: str, first_name: Optional[str] = None) -> List[str]:
        """
        Handle one message and return the reply texts.

        Args:
            chat_id: Chat the message came from.
            text: Message text.
            first_name: Sender's first name, used in the greeting.

        Returns:
            Reply messages in sending order.
        """
        command = (text or "").strip().lower()
        # Telegram appends the bot name in groups: /status@standings_bot
        command = command.split("@", 1)[0].lstrip("/")

        logger.info(f"Received message from chat {chat_id}: {text}")

        if command == "start":
            return [self._welcome(chat_id, first_name)]
        if command == "help":
            return [HELP_TEXT]
        if command == "status":
            return self._status()
        if command == "pause":
            if self.monitor.pause():
                return ["⏸️ Monitoring paused. Send `resume` to continue."]
            return ["Monitoring is already paused."]
        if command == "resume":
            if self.monitor.resume():
                return ["▶️ Monitoring resumed."]
            return ["Monitoring is already running."]
        if command == "subscribe":
            if self.subscribers.add(chat_id):
                return ["🔔 Subscribed to tournament updates."]
            return ["You are already subscribed."]
        if command == "unsubscribe":
            if self.subscribers.remove(chat_id):
                return ["🔕 Unsubscribed from tournament updates."]
            return ["You are not subscribed."]

        return ["🤔 Unknown command.\n\n" + HELP_TEXT]

    def _welcome(self, chat_id: int, first_name: Optional[str]) -> str:
        self.subscribers.add(chat_id)
        user_name = first_name or "User"
        return "\n".join([
            "🎯 *Welcome to Chess Tournament Monitor!*",
            "",
            f"Hello {user_name}! I'll monitor the chess tournament and notify you of any updates.",
            "",
            HELP_TEXT,
        ])

    def _status(self) -> List[str]:
        snapshot = self.monitor.current_snapshot
        if snapshot.is_empty:
            return [format_status_response(snapshot, paused=self.monitor.paused)]
        return [
            format_status_response(snapshot, paused=self.monitor.paused),
            format_table(snapshot),
        ]


class BotPoller:
    """Receives chat messages through getUpdates and answers them."""

    def __init__(
        self,
        token: str,
        processor: CommandProcessor,
        session: Optional[requests.Session] = None
    ):
        self.token = token
        self.processor = processor
        self.session = session or create_telegram_session()
        self.offset: Optional[int] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def fetch_updates(self) -> List[Dict[str, Any]]:
        """
        Fetch pending updates and advance the offset past them.

        Raises:
            TelegramAPIError: If the call fails.
        """
        payload: Dict[str, Any] = {
            "timeout": LONG_POLL_TIMEOUT,
            "allowed_updates": ["message"],
        }
        if self.offset is not None:
            payload["offset"] = self.offset

        updates = call_api(
            self.session, self.token, "getUpdates", payload,
            timeout=LONG_POLL_TIMEOUT + 5
        ) or []

        if updates:
            self.offset = max(update.get("update_id", 0) for update in updates) + 1
        return updates

    def handle_update(self, update: Dict[str, Any]) -> None:
        message = update.get("message") or {}
        text = message.get("text")
        chat = message.get("chat") or {}
        chat_id = chat.get("id")

        if not text or chat_id is None:
            return

        first_name = (message.get("from") or {}).get("first_name")

        try:
            replies = self.processor.handle(chat_id, text, first_name)
        except Exception as e:
            logger.exception(f"Error handling message: {e}")
            replies = [format_error_message("unknown_error", str(e))]

        for reply in replies:
            try:
                send_message(self.session, self.token, chat_id, reply)
            except TelegramAPIError as e:
                logger.error(f"Failed to reply to chat {chat_id}: {e}")

    def poll_once(self) -> int:
        """Fetch and handle one batch of updates; returns how many were handled."""
        updates = self.fetch_updates()
        for update in updates:
            self.handle_update(update)
        return len(updates)

    def run_forever(self) -> None:
        logger.info("Starting Telegram bot...")
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except TelegramAPIError as e:
                logger.error(f"Bot error: {e}")
                self._stop_event.wait(ERROR_BACKOFF_SECONDS)
        logger.info("Telegram bot stopped")

    def start(self) -> None:
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="telegram-bot", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> bool:
        """Signal the bot loop to exit; an in-flight long poll may outlive the timeout."""
        self._stop_event.set()
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()
