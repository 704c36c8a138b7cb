"""Background thread that periodically drops expired approval requests."""

import logging
import threading
from typing import Any

from ai_permissions.approval.ledger import ApprovalLedger

logger = logging.getLogger(__name__)

# Sweep every five minutes
DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60


class ExpirySweeper:
    """
    Run ``ledger.sweep_expired()`` on a fixed interval.

    Sweeping only removes entries that are already past their deadline, so
    it has no ordering dependency on create/resolve/consume.

    Usage:
        with ExpirySweeper(ledger, interval_seconds=300):
            ...  # serve tool calls
    """

    def __init__(
        self,
        ledger: ApprovalLedger,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.ledger = ledger
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the sweeper thread (no-op if already running)."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="approval-expiry-sweeper",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the thread to exit and wait for it."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def __enter__(self) -> "ExpirySweeper":
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.ledger.sweep_expired()
            except Exception:
                logger.exception("Approval expiry sweep failed")
