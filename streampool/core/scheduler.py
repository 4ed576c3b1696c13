"""
Worker scheduler.

Owns the concurrency limit and the registry of submitted units. Admission is
a polling semaphore: the active count is sampled at a fixed interval until a
slot frees up.
"""

import time
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from streampool.core.errors import WorkerCrashed
from streampool.core.liveness import LivenessMonitor
from streampool.core.marker import OutputMarker, write_unit
from streampool.core.models import UnitState, WorkUnit
from streampool.core.forwarder import Forwarder
from streampool.core.workers import BaseLauncher

logger = logging.getLogger(__name__)

Task = Callable[[Any], Iterable]


class WorkerScheduler:
    """Admits, numbers and spawns work units."""

    def __init__(self,
                 concurrency: int,
                 launcher: BaseLauncher,
                 marker: OutputMarker,
                 monitor: LivenessMonitor,
                 forwarder: Forwarder,
                 poll_interval: float = 0.1):
        """
        Initialize scheduler.

        Args:
            concurrency: Maximum number of units running at once. 1 selects
                degraded mode, where tasks run synchronously in the caller.
            launcher: Isolation mechanism used to start workers.
            marker: Artifact naming for this pool's namespace.
            monitor: Liveness monitor used for admission decisions.
            forwarder: Aggregate output, used directly in degraded mode.
            poll_interval: Seconds between admission polls.
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.concurrency = concurrency
        self.launcher = launcher
        self.marker = marker
        self.monitor = monitor
        self.forwarder = forwarder
        self.poll_interval = poll_interval
        # sequence -> unit, in submission order, until consumed
        self.units: Dict[int, WorkUnit] = {}
        self._running: List[WorkUnit] = []
        self._next_sequence = 0

    @property
    def serial(self) -> bool:
        return self.concurrency == 1

    @property
    def submitted(self) -> int:
        """Number of units submitted so far, which is also the next sequence."""
        return self._next_sequence

    def active_count(self) -> int:
        self._running = [unit for unit in self._running if self.monitor.is_active(unit)]
        return len(self._running)

    def running_units(self) -> List[WorkUnit]:
        self.active_count()
        return list(self._running)

    def wait_for_slot(self) -> None:
        """Block until fewer than `concurrency` units are active."""
        if self.serial:
            return
        waited = False
        while self.active_count() >= self.concurrency:
            if not waited:
                logger.debug(f"Waiting for slot ({self.concurrency} workers busy)")
                waited = True
            time.sleep(self.poll_interval)

    def submit(self, task: Task, state: Any) -> WorkUnit:
        """
        Submit a task and its captured state as the next work unit.

        Returns as soon as the worker is started. A worker that cannot be
        started yields a unit that is already crashed.

        Raises:
            WorkerCrashed: In degraded mode only, when the task itself fails.
        """
        self.wait_for_slot()
        sequence = self._next_sequence
        self._next_sequence += 1
        unit = WorkUnit(sequence=sequence,
                        provisional_path=self.marker.provisional_path(sequence),
                        final_path=self.marker.final_path(sequence))
        self.units[sequence] = unit

        if self.serial:
            self._run_inline(unit, task, state)
            return unit

        try:
            self.marker.reserve(unit)
            unit.handle = self.launcher.spawn(
                write_unit,
                (task, state, unit.provisional_path, unit.final_path),
                name=f"{self.marker.pool_name}-{sequence:06d}")
        except Exception as e:
            logger.error(f"Could not start worker for unit {sequence}: {type(e).__name__}: {e}", exc_info=True)
            unit.handle = None
            self.monitor.mark_crashed(unit, f"spawn failed: {e}")
            return unit

        unit.state = UnitState.RUNNING
        self._running.append(unit)
        return unit

    def _run_inline(self, unit: WorkUnit, task: Task, state: Any) -> None:
        unit.state = UnitState.RUNNING
        try:
            if self.forwarder.sink is None:
                self.forwarder.emit(task(state))
            else:
                write_unit(task, state, unit.provisional_path, unit.final_path)
                self.forwarder.forward(unit.final_path)
                self.marker.discard(unit)
        except Exception as e:
            unit.state = UnitState.CRASHED
            unit.error = f"{type(e).__name__}: {e}"
            self.marker.discard(unit)
            raise WorkerCrashed(unit.sequence, unit.final_path, unit.error) from e
        self.release(unit.sequence)

    def release(self, sequence: int) -> Optional[WorkUnit]:
        """Mark a unit consumed and drop it from the registry."""
        unit = self.units.pop(sequence, None)
        if unit is not None:
            unit.state = UnitState.CONSUMED
        return unit
