"""
streampool: bounded parallel execution with order-preserving output.
"""

__version__ = "0.1.0"

from .pool import StreamPool
from .pipeline import stream_parallel, chunk_records, ProgressReporter
from .core.errors import (
    StreamPoolError,
    PoolClosedError,
    ConfigurationError,
    UnitFailure,
    WorkerUnresponsive,
    WorkerCrashed,
    SpawnFailure,
    ForwardingError
)
from .core.models import UnitState, WorkUnit

__all__ = [
    "StreamPool",
    "stream_parallel",
    "chunk_records",
    "ProgressReporter",
    "StreamPoolError",
    "PoolClosedError",
    "ConfigurationError",
    "UnitFailure",
    "WorkerUnresponsive",
    "WorkerCrashed",
    "SpawnFailure",
    "ForwardingError",
    "UnitState",
    "WorkUnit"
]
