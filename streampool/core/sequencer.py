"""
Output sequencer.

Consumes published units strictly in submission order. At most one unit is
being forwarded at any time, which bounds memory use regardless of pool size.
"""

import os
import time
import logging
import threading
from typing import Callable, Optional

from streampool.core.errors import ForwardingError, SpawnFailure, WorkerCrashed
from streampool.core.forwarder import Forwarder
from streampool.core.liveness import LivenessMonitor
from streampool.core.marker import OutputMarker
from streampool.core.models import UnitState, WorkUnit
from streampool.core.scheduler import WorkerScheduler

logger = logging.getLogger(__name__)


class OutputSequencer:
    """Releases unit outputs one at a time, in sequence order."""

    def __init__(self,
                 scheduler: WorkerScheduler,
                 monitor: LivenessMonitor,
                 marker: OutputMarker,
                 forwarder: Forwarder,
                 background: bool = True,
                 poll_interval: float = 0.05,
                 on_consumed: Optional[Callable[[WorkUnit], None]] = None):
        """
        Initialize sequencer.

        Args:
            scheduler: Scheduler owning the unit registry.
            monitor: Liveness monitor, used to tell unfinished units from dead ones.
            marker: Artifact naming for this pool's namespace.
            forwarder: Destination of unit output.
            background: Forward on a helper thread instead of in the caller.
            poll_interval: Seconds drain_all() sleeps after an unproductive step.
            on_consumed: Called with each unit after it has been consumed.
        """
        self.scheduler = scheduler
        self.monitor = monitor
        self.marker = marker
        self.forwarder = forwarder
        self.background = background
        self.poll_interval = poll_interval
        self.on_consumed = on_consumed
        self.cursor = 0
        self._in_flight: Optional[WorkUnit] = None
        self._helper: Optional[threading.Thread] = None
        self._helper_error: Optional[BaseException] = None
        self._forwarding_failure: Optional[ForwardingError] = None
        self._draining = False

    @property
    def pending(self) -> int:
        """Units submitted but not yet consumed."""
        return self.scheduler.submitted - self.cursor

    def drain_once(self) -> bool:
        """
        Advance the output by at most one step.

        Returns:
            True if progress was made, False if the cursor unit (or the
            forwarding in flight) is not finished yet.

        Raises:
            WorkerCrashed: The cursor unit will never publish.
            ForwardingError: The sink failed on the cursor unit.
            RuntimeError: Called while another drain is running.
        """
        if self.scheduler.serial:
            return False
        if self._draining:
            raise RuntimeError("OutputSequencer must not be drained concurrently")
        self._draining = True
        try:
            return self._step()
        finally:
            self._draining = False

    def drain_all(self) -> None:
        """Drain until the cursor has passed every submitted unit."""
        if self.scheduler.serial:
            return
        while self.cursor < self.scheduler.submitted:
            if not self.drain_once():
                time.sleep(self.poll_interval)
        logger.debug(f"Drained all {self.cursor} units")

    def _step(self) -> bool:
        progressed = False
        if self._in_flight is not None:
            if not self._settle():
                return False
            progressed = True

        unit = self.scheduler.units.get(self.cursor)
        if unit is None:
            return progressed
        if unit.state == UnitState.CRASHED:
            if self._forwarding_failure is not None and self._forwarding_failure.sequence == unit.sequence:
                raise self._forwarding_failure
            raise unit_failure(unit)
        if not self.marker.is_published(unit):
            if self.monitor.is_active(unit):
                return progressed
            # Re-check: the worker may have published after the first look
            if not self.marker.is_published(unit):
                self.monitor.mark_crashed(unit, "worker ended without publishing output")
                raise unit_failure(unit)

        self._start(unit)
        if not self.background:
            self._settle()
        return True

    def _start(self, unit: WorkUnit) -> None:
        unit.state = UnitState.PUBLISHED
        self._in_flight = unit
        self._helper_error = None
        logger.debug(f"Forwarding unit {unit.sequence} from {unit.final_path}")
        if self.background:
            self._helper = threading.Thread(target=self._forward, args=(unit,),
                                            name=f"forward-{unit.sequence:06d}", daemon=True)
            self._helper.start()
        else:
            self._forward(unit)

    def _forward(self, unit: WorkUnit) -> None:
        """Publish, forward, delete. Runs on the helper thread in background mode."""
        try:
            self.forwarder.forward(unit.final_path)
            os.unlink(unit.final_path)
        except Exception as e:
            logger.error(f"Forwarding unit {unit.sequence} failed: {e}", exc_info=True)
            self._helper_error = e

    def _settle(self) -> bool:
        """Check whether the forwarding in flight has finished; consume its unit if so."""
        unit = self._in_flight
        if self.marker.is_published(unit):
            if self._helper is not None and self._helper.is_alive():
                return False
            error = self._helper_error
            self._in_flight = None
            self._helper = None
            # The unit stays at the cursor; it must never be forwarded again
            self.monitor.mark_crashed(unit, f"forwarding failed: {error}")
            self._forwarding_failure = ForwardingError(unit.sequence, unit.final_path, str(error) if error else None)
            raise self._forwarding_failure
        if self._helper is not None:
            self._helper.join()
        self._in_flight = None
        self._helper = None
        self.scheduler.release(unit.sequence)
        self.cursor += 1
        if self.on_consumed is not None:
            self.on_consumed(unit)
        return True


def unit_failure(unit: WorkUnit) -> WorkerCrashed:
    """Build the exception reported for a crashed unit."""
    cls = SpawnFailure if unit.handle is None else WorkerCrashed
    return cls(unit.sequence, unit.final_path, unit.error)
