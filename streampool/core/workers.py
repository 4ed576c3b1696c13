"""
Worker launchers.

Provides the isolation mechanisms a pool can run its units in: separate
processes (default, crash isolated and killable) or threads sharing an
immutable snapshot of the captured state.
"""

import os
import sys
import signal
import logging
import threading
import multiprocessing
from typing import Any, Callable, Optional, Tuple

# Use the logger for this specific module
logger = logging.getLogger(__name__)

WORKER_TYPES = ('process', 'thread')


def run_isolated(target: Callable, *args) -> None:
    """
    Entry point of a worker process.

    Must be defined at top-level for pickling. A failing task is logged and
    turned into a non-zero exit status, which the liveness monitor reads as a
    crash.
    """
    try:
        target(*args)
    except Exception as e:
        logger.error(f"Worker {os.getpid()} failed: {type(e).__name__}: {e}", exc_info=True)
        sys.exit(1)


def pid_running(pid: int) -> bool:
    """
    Check a raw child pid without blocking.

    Pids that were already reaped, or never were our children, are reported
    as not running.
    """
    try:
        fpid, _status = os.waitpid(pid, os.WNOHANG)
    except (ChildProcessError, ProcessLookupError):
        return False
    return fpid == 0


class BaseLauncher:
    """Base class for worker launchers."""

    kind = 'base'

    def spawn(self, target: Callable, args: Tuple, name: str) -> Any:
        """Start target(*args) as a worker and return its handle."""
        raise NotImplementedError("Subclasses must implement this method")

    def is_running(self, handle: Any) -> bool:
        raise NotImplementedError("Subclasses must implement this method")

    def exit_status(self, handle: Any) -> Optional[int]:
        """Exit status of a finished worker, None while running or when unknown."""
        raise NotImplementedError("Subclasses must implement this method")

    def kill(self, handle: Any) -> bool:
        """Forcibly terminate and reap a worker. Returns True if it was killed."""
        raise NotImplementedError("Subclasses must implement this method")


class ProcessLauncher(BaseLauncher):
    """Runs each unit in its own process."""

    kind = 'process'

    def __init__(self, start_method: Optional[str] = None):
        """
        Initialize process launcher.

        Args:
            start_method: multiprocessing start method ('fork', 'spawn',
                'forkserver'). None selects the platform default. Anything but
                'fork' requires tasks and state to be picklable.
        """
        self._context = multiprocessing.get_context(start_method)

    def spawn(self, target: Callable, args: Tuple, name: str) -> Any:
        process = self._context.Process(target=run_isolated, args=(target,) + tuple(args), name=name)
        process.start()
        logger.debug(f"Started worker process {name} pid={process.pid}")
        return process

    def is_running(self, handle: Any) -> bool:
        if handle is None:
            return False
        if isinstance(handle, int):
            return pid_running(handle)
        try:
            return handle.is_alive()
        except (ValueError, AssertionError):
            # Closed, or not a child of this process
            return False

    def exit_status(self, handle: Any) -> Optional[int]:
        if handle is None or isinstance(handle, int):
            return None
        try:
            return handle.exitcode
        except ValueError:
            return None

    def kill(self, handle: Any) -> bool:
        if handle is None:
            return False
        if isinstance(handle, int):
            try:
                os.kill(handle, signal.SIGKILL)
                os.waitpid(handle, 0)
            except (ChildProcessError, ProcessLookupError):
                return False
            return True
        if not self.is_running(handle):
            return False
        handle.kill()
        handle.join()
        return True


class WorkerThread(threading.Thread):
    """Thread that records an exit status like a process does."""

    def __init__(self, target: Callable, args: Tuple, name: str):
        super().__init__(name=name, daemon=True)
        self._work = target
        self._work_args = args
        self.exitcode: Optional[int] = None

    def run(self):
        try:
            self._work(*self._work_args)
            self.exitcode = 0
        except Exception as e:
            logger.error(f"Worker thread {self.name} failed: {type(e).__name__}: {e}", exc_info=True)
            self.exitcode = 1

    @property
    def pid(self) -> Optional[int]:
        return self.native_id


class ThreadLauncher(BaseLauncher):
    """Runs each unit in a thread of the current process. Threads cannot be killed."""

    kind = 'thread'

    def spawn(self, target: Callable, args: Tuple, name: str) -> Any:
        thread = WorkerThread(target, tuple(args), name)
        thread.start()
        logger.debug(f"Started worker thread {name}")
        return thread

    def is_running(self, handle: Any) -> bool:
        if handle is None or not hasattr(handle, 'is_alive'):
            return False
        return handle.is_alive()

    def exit_status(self, handle: Any) -> Optional[int]:
        if handle is None or self.is_running(handle):
            return None
        return getattr(handle, 'exitcode', None)

    def kill(self, handle: Any) -> bool:
        if self.is_running(handle):
            logger.warning(f"Cannot terminate worker thread {handle.name}; abandoning it")
        return False


def create_launcher(worker_type: str = 'process', start_method: Optional[str] = None) -> BaseLauncher:
    """
    Factory function to create the launcher for a worker type.

    Args:
        worker_type: 'process' or 'thread'.
        start_method: multiprocessing start method, process workers only.

    Returns:
        Launcher instance.

    Raises:
        ValueError: If worker_type is not recognized.
    """
    worker_type = worker_type.lower()
    if worker_type == 'process':
        return ProcessLauncher(start_method)
    elif worker_type == 'thread':
        return ThreadLauncher()
    else:
        raise ValueError(f"Unknown worker type: {worker_type}. Use 'process' or 'thread'.")
