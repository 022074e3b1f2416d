"""
Monitor module for the Standings Watcher.

This module runs the polling task:
fetch → parse → diff → replace shared snapshot → persist → notify

One cycle always completes before the idle delay starts, so cycles never
overlap. The current snapshot lives in a SharedState object that only the
polling task writes; status queries read it at any time.
"""

import enum
import threading
from typing import Callable, List, Optional, Sequence, Tuple

from standings_watcher.compare import diff_snapshots, load_snapshot, save_snapshot
from standings_watcher.fetch import NetworkError, fetch_standings_page
from standings_watcher.models import ChangeEvent, Snapshot
from standings_watcher.parse import parse_standings_page
from standings_watcher.utils import MonitorConfig, get_logger


# Module logger
logger = get_logger("monitor")

# Idle delay while paused (capped by the poll interval)
PAUSED_POLL_INTERVAL = 5.0
DEFAULT_STOP_TIMEOUT = 5.0

ChangeHandler = Callable[[Sequence[ChangeEvent], Snapshot], None]


class CycleState(enum.Enum):
    """Polling state: RUNNING polls then idles, PAUSED only idles."""
    RUNNING = "running"
    PAUSED = "paused"


class SharedState:
    """
    Current snapshot and pause flag shared between the poller and readers.

    Snapshots are immutable, so replacing the reference is the only write
    that needs the lock.
    """

    def __init__(self, snapshot: Optional[Snapshot] = None):
        self._lock = threading.Lock()
        self._snapshot = snapshot or Snapshot.empty()
        self._state = CycleState.RUNNING

    @property
    def snapshot(self) -> Snapshot:
        with self._lock:
            return self._snapshot

    def replace_snapshot(self, snapshot: Snapshot) -> Snapshot:
        """Swap in a new snapshot and return the previous one."""
        with self._lock:
            previous = self._snapshot
            self._snapshot = snapshot
            return previous

    @property
    def state(self) -> CycleState:
        with self._lock:
            return self._state

    def set_state(self, state: CycleState) -> bool:
        """
        Move to the given state.

        Returns:
            False if already in that state.
        """
        with self._lock:
            if self._state is state:
                return False
            self._state = state
            return True


class StandingsMonitor:
    """Polls the standings page and reports changes."""

    def __init__(
        self,
        config: MonitorConfig,
        on_changes: Optional[ChangeHandler] = None,
        fetcher: Callable[..., object] = fetch_standings_page,
        shared_state: Optional[SharedState] = None,
        load_state: bool = True
    ):
        self.config = config
        self.on_changes = on_changes
        self.fetcher = fetcher

        if shared_state is None:
            initial = load_snapshot(config.state_path) if load_state else Snapshot.empty()
            shared_state = SharedState(initial)
        self.shared = shared_state

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -------------------------------------------------------------------------
    # Read accessors
    # -------------------------------------------------------------------------

    @property
    def current_snapshot(self) -> Snapshot:
        return self.shared.snapshot

    @property
    def paused(self) -> bool:
        return self.shared.state is CycleState.PAUSED

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Pause / resume
    # -------------------------------------------------------------------------

    def pause(self) -> bool:
        if not self.shared.set_state(CycleState.PAUSED):
            logger.info("Monitoring already paused")
            return False
        logger.info("Monitoring paused")
        return True

    def resume(self) -> bool:
        if not self.shared.set_state(CycleState.RUNNING):
            logger.info("Monitoring already running")
            return False
        logger.info("Monitoring resumed")
        return True

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    def next_action(self) -> Tuple[bool, float]:
        """
        Decide what the next cycle does.

        Returns:
            Tuple of (should_poll, idle_seconds_afterwards).
        """
        if self.shared.state is CycleState.PAUSED:
            return False, min(self.config.poll_interval, PAUSED_POLL_INTERVAL)
        return True, self.config.poll_interval

    def fetch_snapshot(self) -> Snapshot:
        """
        Fetch and parse the standings page.

        Raises:
            NetworkError: If the page cannot be retrieved.
        """
        result = self.fetcher(
            self.config.endpoint,
            headers=self.config.http_headers,
            timeout=self.config.request_timeout,
            max_retries=self.config.max_retries,
            backoff_base=self.config.backoff_base
        )
        return parse_standings_page(result.html_content, result.source_url)

    def run_cycle(self) -> List[ChangeEvent]:
        """
        Run one poll cycle.

        A NetworkError is logged and ends the cycle without touching the
        shared snapshot.

        Returns:
            The change events detected in this cycle.
        """
        logger.debug("Checking for standings updates...")

        try:
            new_snapshot = self.fetch_snapshot()
        except NetworkError as e:
            logger.error(f"Error during update check: {e}")
            return []

        previous = self.shared.snapshot
        changes = diff_snapshots(previous, new_snapshot)

        self.shared.replace_snapshot(new_snapshot)
        save_snapshot(new_snapshot, self.config.state_path)

        if not changes:
            logger.debug("No changes detected")
            return changes

        logger.info(f"Changes detected! Processing {len(changes)} update(s)")
        for change in changes:
            logger.info(f"Change: {change.describe()}")

        if self.on_changes is not None:
            try:
                self.on_changes(changes, new_snapshot)
            except Exception as e:
                logger.exception(f"Change handler failed: {e}")

        return changes

    def run_forever(self) -> None:
        """Poll until stop() is called."""
        logger.info(
            f"Starting monitoring loop (checking every {self.config.poll_interval} seconds)"
        )

        while not self._stop_event.is_set():
            should_poll, idle_seconds = self.next_action()

            if should_poll:
                try:
                    self.run_cycle()
                except Exception as e:
                    logger.exception(f"Unexpected error in monitoring loop: {e}")
            else:
                logger.debug("Monitoring paused; sleeping before rechecking state")

            self._stop_event.wait(idle_seconds)

        logger.info("Monitoring loop stopped")

    def start(self) -> None:
        """Run the polling loop in a background thread."""
        if self.running:
            logger.warning("Monitor already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run_forever,
            name="standings-poller",
            daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = DEFAULT_STOP_TIMEOUT) -> bool:
        """
        Signal the polling loop to exit and wait for it.

        Returns:
            True if the loop has terminated within the timeout.
        """
        logger.info("Stopping standings monitor...")
        self._stop_event.set()

        if self._thread is None:
            return True

        self._thread.join(timeout)
        stopped = not self._thread.is_alive()
        if stopped:
            logger.info("Standings monitor stopped")
        else:
            logger.warning(f"Polling thread did not stop within {timeout}s")
        return stopped
