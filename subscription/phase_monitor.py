"""
Bill Phase Monitor

Re-evaluates the display phase of the current bills on a fixed interval
(one minute by default) so a bill slides from Due to GracePeriod to Overdue
on screen without waiting for a refresh. It only reads the snapshot.
"""

import asyncio
from datetime import datetime
from typing import Optional, Dict, Callable, List

from subscription.bill_lifecycle import BillPhase, find_current_bill, utc_now
from subscription.reconciliation import ReconciliationEngine, ReconciliationResult
from utils.logger import logger


PhaseListener = Callable[[Dict[str, BillPhase]], None]


class BillPhaseMonitor:
    """Periodic display-phase re-check for the current bills"""

    def __init__(
        self,
        engine: ReconciliationEngine,
        interval: float = 60.0,
        clock: Callable[[], datetime] = utc_now
    ):
        self.interval = interval
        self._engine = engine
        self._clock = clock
        self._listeners: List[PhaseListener] = []
        self._last_phases: Optional[Dict[str, BillPhase]] = None
        self._monitoring = False
        self._monitor_task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def is_running(self) -> bool:
        return self._monitoring

    def add_listener(self, listener: PhaseListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def current_phases(self) -> Dict[str, BillPhase]:
        """Display phase of each current bill, keyed by bill id"""
        snapshot = self._engine.snapshot
        if snapshot is None:
            return {}
        current = find_current_bill(snapshot.history)
        return current.phases(snapshot.renewal_date, self._clock())

    def check(self) -> bool:
        """
        Recompute phases and notify listeners if anything moved.

        Returns:
            True if the phases changed since the last check
        """
        phases = self.current_phases()
        if phases == self._last_phases:
            return False

        self._last_phases = phases
        for listener in list(self._listeners):
            try:
                listener(phases)
            except Exception:
                logger.exception("Bill phase listener failed")
        return True

    def _on_snapshot(self, result: ReconciliationResult) -> None:
        self.check()

    async def start(self) -> None:
        """Start the periodic re-check"""
        if self._monitoring:
            return

        self._monitoring = True
        self._unsubscribe = self._engine.subscribe(self._on_snapshot)
        self._monitor_task = asyncio.create_task(self._monitoring_loop())
        logger.info("Bill phase monitoring started")

    async def stop(self) -> None:
        """Stop the periodic re-check"""
        self._monitoring = False
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None
        logger.info("Bill phase monitoring stopped")

    async def _monitoring_loop(self) -> None:
        while self._monitoring:
            self.check()
            await asyncio.sleep(self.interval)
