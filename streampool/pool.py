"""
Pool controller.

Composes the scheduler, liveness monitor and output sequencer behind one
object: submit units, drain output periodically, shut down at the end.
"""

import os
import time
import shutil
import logging
import tempfile
from typing import Any, Callable, Iterable, Optional, TextIO

from streampool.core.errors import ConfigurationError, PoolClosedError, StreamPoolError, WorkerUnresponsive
from streampool.core.forwarder import Forwarder, Sink
from streampool.core.liveness import LivenessMonitor
from streampool.core.marker import OutputMarker
from streampool.core.models import UnitState, WorkUnit
from streampool.core.scheduler import WorkerScheduler
from streampool.core.sequencer import OutputSequencer, unit_failure
from streampool.core.workers import create_launcher

# Use the logger for this specific module
logger = logging.getLogger(__name__)

DEFAULT_AWAIT_TIMEOUT = 180.0


class StreamPool:
    """
    Bounded pool of isolated workers with order-preserving output.

    Units run concurrently and may finish in any order; their output reaches
    the aggregate stream in submission order, one unit at a time.

    Example:
        with StreamPool(concurrency=4, pool_name='vcf') as pool:
            for batch in batches:
                pool.submit(annotate, batch)
                pool.drain()
    """

    def __init__(self,
                 concurrency: Optional[int] = None,
                 pool_name: str = 'streampool',
                 output: Optional[TextIO] = None,
                 sink: Optional[Sink] = None,
                 await_timeout: float = DEFAULT_AWAIT_TIMEOUT,
                 admission_poll_interval: float = 0.1,
                 await_poll_interval: float = 0.2,
                 drain_poll_interval: float = 0.05,
                 worker_type: str = 'process',
                 start_method: Optional[str] = None,
                 forward_in_background: bool = True,
                 keep_workdir: bool = False,
                 workdir_root: Optional[str] = None,
                 on_consumed: Optional[Callable[[WorkUnit], None]] = None):
        """
        Initialize pool.

        Args:
            concurrency: Maximum number of concurrently running units. Defaults
                to CPU count. 1 runs every task synchronously at submission.
            pool_name: Name used for the private working directory and the
                artifact file names.
            output: Text stream receiving the ordered output. Defaults to stdout.
            sink: Callback receiving each published artifact path instead of
                streaming its lines. Mutually exclusive with output.
            await_timeout: Seconds shutdown waits for each unit before killing it.
            admission_poll_interval: Seconds between checks for a free slot.
            await_poll_interval: Seconds between checks while awaiting a unit.
            drain_poll_interval: Seconds between unproductive drain steps.
            worker_type: 'process' or 'thread'.
            start_method: multiprocessing start method for process workers.
            forward_in_background: Forward output on a helper thread.
            keep_workdir: Keep the working directory after a clean shutdown.
            workdir_root: Directory the working directory is created in.
            on_consumed: Called with each unit once its output was forwarded.
        """
        if concurrency is None:
            concurrency = os.cpu_count() or 1
        if not isinstance(concurrency, int) or concurrency < 1:
            raise ConfigurationError(f"concurrency must be an integer >= 1, got {concurrency!r}")
        self.concurrency = concurrency
        self.pool_name = pool_name
        self.await_timeout = await_timeout
        self.await_poll_interval = await_poll_interval
        self.keep_workdir = keep_workdir

        self.forwarder = Forwarder(output=output, sink=sink)
        self.launcher = create_launcher(worker_type, start_method)
        self.workdir = tempfile.mkdtemp(prefix=f"{pool_name}_", dir=workdir_root)
        self.marker = OutputMarker(self.workdir, pool_name)
        self.monitor = LivenessMonitor(self.launcher, self.marker)
        self.scheduler = WorkerScheduler(concurrency, self.launcher, self.marker, self.monitor,
                                         self.forwarder, poll_interval=admission_poll_interval)
        self.sequencer = OutputSequencer(self.scheduler, self.monitor, self.marker, self.forwarder,
                                         background=forward_in_background,
                                         poll_interval=drain_poll_interval,
                                         on_consumed=on_consumed)
        self._closed = False
        self._failed = False
        logger.info(f"Using {concurrency} {self.launcher.kind} workers for pool '{pool_name}' in {self.workdir}")

    @property
    def serial(self) -> bool:
        """True in degraded mode, where tasks run synchronously in the caller."""
        return self.scheduler.serial

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def failed(self) -> bool:
        return self._failed

    def submit(self, task: Callable[[Any], Iterable], state: Any = None) -> WorkUnit:
        """
        Submit a task with its captured state.

        Blocks until a worker slot is free, then starts the worker and returns
        its unit without waiting for completion.

        Raises:
            PoolClosedError: If the pool was shut down or aborted.
        """
        if self._closed:
            raise PoolClosedError(f"Pool '{self.pool_name}' is closed")
        return self.scheduler.submit(task, state)

    def drain(self) -> bool:
        """Emit the next unit's output if it is ready. Returns True on progress."""
        return self.sequencer.drain_once()

    def drain_all(self) -> None:
        """Emit all remaining output, waiting for units still running."""
        self.sequencer.drain_all()

    def await_unit(self, unit: WorkUnit, timeout: Optional[float] = None) -> None:
        """
        Wait for a unit to publish its output.

        Args:
            unit: Unit to wait for.
            timeout: Seconds to wait. Defaults to the pool's await_timeout.

        Raises:
            WorkerUnresponsive: The worker was still running at the timeout and
                has been killed.
            WorkerCrashed: The worker ended without publishing.
        """
        if unit.state in (UnitState.PUBLISHED, UnitState.CONSUMED):
            return
        if unit.state == UnitState.CRASHED:
            raise unit_failure(unit)
        if timeout is None:
            timeout = self.await_timeout

        if self.monitor.is_active(unit):
            pid = getattr(unit.handle, 'pid', unit.handle)
            logger.info(f"Waiting up to {timeout} seconds for unit {unit.sequence} (pid={pid}) to complete")
            deadline = time.monotonic() + timeout
            while not self.marker.is_published(unit):
                if not self.monitor.is_active(unit):
                    break
                if time.monotonic() >= deadline:
                    if self.monitor.handle_running(unit.handle):
                        self._kill(unit, f"no output after {timeout} seconds")
                        logger.error(f"FATAL: worker killed because it stopped responding, pid = {pid}, "
                                     f"running for {unit.elapsed:.1f}s")
                        logger.debug(f"Unresponsive unit: {unit.to_dict()}")
                        raise WorkerUnresponsive(unit.sequence, unit.final_path, unit.error)
                    break
                time.sleep(self.await_poll_interval)

        if self.marker.is_published(unit) or unit.state == UnitState.CONSUMED:
            logger.debug(f"OK unit {unit.sequence}, processing {unit.final_path}")
            return
        self.monitor.mark_crashed(unit, unit.error or "worker ended without publishing output")
        raise unit_failure(unit)

    def shutdown(self) -> None:
        """
        Wait for all outstanding units, then emit all remaining output.

        Calling shutdown again is a no-op. On a fatal unit failure the other
        workers are killed, the working directory is kept for diagnosis and
        the failure propagates.
        """
        if self._closed:
            logger.debug(f"Pool '{self.pool_name}' already shut down")
            return
        self._closed = True
        if not self.serial:
            try:
                for unit in list(self.scheduler.units.values()):
                    self.await_unit(unit)
                self.sequencer.drain_all()
            except StreamPoolError as e:
                self._failed = True
                logger.error(f"Pool '{self.pool_name}' failed: {e}")
                self._kill_running("pool aborted")
                logger.error(f"Artifacts kept in {self.workdir}")
                raise
        logger.info(f"Pool '{self.pool_name}' finished {self.scheduler.submitted} units")
        self._cleanup()

    def abort(self) -> None:
        """Kill live workers and close the pool, keeping the working directory."""
        if self._closed:
            return
        self._closed = True
        self._failed = True
        self._kill_running("pool aborted")
        logger.warning(f"Pool '{self.pool_name}' aborted; artifacts kept in {self.workdir}")

    def _kill(self, unit: WorkUnit, reason: str) -> None:
        killed = self.launcher.kill(unit.handle)
        pid = getattr(unit.handle, 'pid', unit.handle)
        if killed:
            logger.warning(f"Killed worker pid={pid} of unit {unit.sequence}: {reason}")
        self.monitor.mark_crashed(unit, reason)

    def _kill_running(self, reason: str) -> None:
        for unit in self.scheduler.running_units():
            self._kill(unit, reason)

    def _cleanup(self) -> None:
        if self.keep_workdir:
            return
        shutil.rmtree(self.workdir, ignore_errors=True)
        logger.debug(f"Removed working directory {self.workdir}")

    def __enter__(self):
        """Context manager entry point."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Shut down cleanly, or abort if the block raised."""
        if exc_type is None:
            self.shutdown()
        else:
            self.abort()
