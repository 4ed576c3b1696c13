"""
Liveness monitor.

A worker counts as active while its handle is running or its provisional
artifact exists. Handle liveness alone is racy around process reaping, so the
provisional file is the authoritative backstop.
"""

import logging
from typing import Any

from streampool.core.workers import BaseLauncher
from streampool.core.marker import OutputMarker
from streampool.core.models import UnitState, WorkUnit

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """Infers the state of running work units."""

    def __init__(self, launcher: BaseLauncher, marker: OutputMarker):
        self.launcher = launcher
        self.marker = marker

    def handle_running(self, handle: Any) -> bool:
        """True if the handle refers to a worker that is still running."""
        try:
            return self.launcher.is_running(handle)
        except OSError as e:
            logger.debug(f"Treating handle {handle!r} as finished: {e}")
            return False

    def is_active(self, unit: WorkUnit) -> bool:
        """
        Check whether a unit's worker is still active.

        Args:
            unit: Work unit to check.

        Returns:
            True if the handle is confirmed running or the provisional
            artifact still exists. Terminal units are never active.
        """
        if unit.is_terminal:
            return False
        if self.handle_running(unit.handle):
            return True
        if self.refresh(unit) == UnitState.PUBLISHED:
            return False
        status = self.launcher.exit_status(unit.handle)
        if status is not None and status != 0:
            # Publishing happens before a worker returns, so a failed exit
            # status means the unit will never publish.
            self.mark_crashed(unit, f"worker exited with status {status}")
            return False
        return self.marker.is_provisional(unit)

    def refresh(self, unit: WorkUnit) -> UnitState:
        """Record a publish observed on disk."""
        if unit.state in (UnitState.SUBMITTED, UnitState.RUNNING) and self.marker.is_published(unit):
            unit.state = UnitState.PUBLISHED
            logger.debug(f"Unit {unit.sequence} published {unit.final_path}")
        return unit.state

    def mark_crashed(self, unit: WorkUnit, reason: str) -> None:
        """Move a unit to the crashed state and drop its stale provisional artifact."""
        if unit.state == UnitState.CRASHED:
            return
        unit.state = UnitState.CRASHED
        unit.error = reason
        logger.error(f"Unit {unit.sequence} crashed after {unit.elapsed:.1f}s: {reason}")
        logger.debug(f"Crashed unit: {unit.to_dict()}")
        self.marker.discard_provisional(unit)
