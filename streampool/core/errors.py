"""
Exception hierarchy for the streaming pool.

Admission stalls are expected backpressure and never raise. Everything here
is fatal to at least one work unit.
"""

from typing import Optional


class StreamPoolError(Exception):
    """Base class for pool errors."""
    pass


class PoolClosedError(StreamPoolError):
    """Raised when work is submitted to a pool that has been shut down."""
    pass


class ConfigurationError(StreamPoolError):
    """Invalid pool settings, from a config file or constructor arguments."""
    pass


class UnitFailure(StreamPoolError):
    """
    A fatal condition attributed to one work unit.

    Carries the unit's sequence number and artifact path so the failure
    can be diagnosed from the pool's working directory.
    """

    reason = "work unit failed"

    def __init__(self, sequence: int, path: Optional[str] = None, detail: Optional[str] = None):
        self.sequence = sequence
        self.path = path
        self.detail = detail
        message = f"FATAL: {self.reason} (sequence={sequence}, path={path})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class WorkerUnresponsive(UnitFailure):
    """Worker neither completed nor published within the await timeout and was killed."""
    reason = "worker killed because it stopped responding"


class WorkerCrashed(UnitFailure):
    """Worker ended without publishing its output. Never retried."""
    reason = "worker appears to have crashed"


class SpawnFailure(WorkerCrashed):
    """The isolation mechanism could not start a worker."""
    reason = "worker could not be started"


class ForwardingError(UnitFailure):
    """The output sink failed while forwarding a published unit."""
    reason = "forwarding unit output failed"
