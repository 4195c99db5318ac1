import logging
import threading
from datetime import datetime
from uuid import uuid4

from .core.correlation import with_correlation
from .engine import OrderEngine

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Runs the expiry sweep on a background thread at a fixed interval."""

    def __init__(self, engine: OrderEngine, interval_seconds: float = 300.0) -> None:
        self._engine = engine
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the sweep loop in a background thread."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="expiry-sweeper", daemon=True)
        self._thread.start()
        logger.info(f"Expiry sweeper started (interval={self._interval:.0f}s)")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the sweep loop, waiting for an in-flight sweep to finish."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Expiry sweeper stopped")

    def run_once(self, now: datetime | None = None) -> int:
        """Warn about orders about to expire, then cancel the expired ones."""
        with with_correlation(f"sweep-{uuid4().hex[:12]}"):
            self._warn_expiring_soon(now)
            return self._engine.sweep_expired_orders(now)

    def _warn_expiring_soon(self, now: datetime | None) -> None:
        # Advisory only; never blocks the sweep
        try:
            expiring = self._engine.get_orders_expiring_soon(now=now)
        except Exception:
            logger.exception("Expiring-soon lookup failed")
            return
        if expiring:
            logger.warning(
                f"{len(expiring)} unassigned orders expire soon: "
                f"{', '.join(o.order_id for o in expiring[:10])}"
            )

    def _run_loop(self) -> None:
        # A re-run after an aborted sweep is safe, so failures only get logged
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Expiry sweep failed")
            self._stop_event.wait(self._interval)
