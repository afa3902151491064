"""
Automatic sync timer.

Runs SyncReconciler.sync() on a fixed interval in a background thread.
The reconciler itself is timer-agnostic; this class is the caller-side
policy. An interval of 0 minutes means disabled.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from .entities import SyncOutcome, now_iso
from .reconciler import SyncReconciler


logger = logging.getLogger(__name__)


class AutoSyncState(str, Enum):
    """Timer lifecycle states."""

    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


class AutoSyncTimer:
    """
    Background loop calling sync() every `interval_minutes`.

    Ticks that land while a manual pass is running are coalesced by the
    reconciler, so the timer never starts a second concurrent pass.
    """

    def __init__(
        self,
        reconciler: SyncReconciler,
        interval_minutes: float = 0,
    ):
        self.reconciler = reconciler
        self.interval_minutes = interval_minutes

        self._state = AutoSyncState.STOPPED
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._last_sync_at: Optional[str] = None
        self._on_synced: Optional[Callable[[SyncOutcome], None]] = None

    @property
    def state(self) -> AutoSyncState:
        return self._state

    @property
    def enabled(self) -> bool:
        return self.interval_minutes > 0

    @property
    def is_running(self) -> bool:
        return self._state == AutoSyncState.RUNNING

    @property
    def last_sync_at(self) -> Optional[str]:
        return self._last_sync_at

    def set_on_synced(self, callback: Callable[[SyncOutcome], None]) -> None:
        """Set a callback invoked after every automatic pass."""
        self._on_synced = callback

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> bool:
        """
        Start the timer thread.

        Returns:
            False if the timer is disabled (interval 0), True otherwise
        """
        if self._state != AutoSyncState.STOPPED:
            raise RuntimeError(f"Cannot start auto sync in {self._state.value} state")

        if not self.enabled:
            logger.info("Auto sync disabled (interval 0)")
            return False

        self._stop_event.clear()
        self._state = AutoSyncState.RUNNING
        self._thread = threading.Thread(target=self._loop, name="auto-sync", daemon=True)
        self._thread.start()
        logger.info(f"Auto sync started (every {self.interval_minutes} min)")
        return True

    def stop(self, timeout: float = 30.0) -> None:
        """Stop the timer, waiting for an in-progress pass to finish."""
        if self._state == AutoSyncState.STOPPED:
            return

        logger.info("Stopping auto sync...")
        self._state = AutoSyncState.STOPPING
        self._stop_event.set()

        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Auto sync thread did not stop within timeout")
            self._thread = None

        self._state = AutoSyncState.STOPPED
        logger.info("Auto sync stopped")

    def reconfigure(self, interval_minutes: float) -> None:
        """Change the interval, restarting the thread if needed."""
        was_running = self.is_running
        if was_running:
            self.stop()
        self.interval_minutes = interval_minutes
        if was_running or self.enabled:
            self.start()

    # =========================================================================
    # Loop
    # =========================================================================

    def tick(self) -> SyncOutcome:
        """Run one automatic pass."""
        outcome = self.reconciler.sync(manual=False)
        self._last_sync_at = now_iso()

        if self._on_synced is not None:
            try:
                self._on_synced(outcome)
            except Exception as e:
                logger.error(f"Error in auto sync callback: {e}")

        return outcome

    def _loop(self) -> None:
        logger.info("Auto sync loop started")

        while not self._stop_event.wait(self.interval_minutes * 60):
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error in auto sync loop: {e}", exc_info=True)

        logger.info("Auto sync loop ended")
