"""
Core components of the streaming pool: artifact protocol, worker launchers,
liveness monitor, scheduler and output sequencer.
"""

from streampool.core.errors import (
    StreamPoolError,
    PoolClosedError,
    UnitFailure,
    WorkerUnresponsive,
    WorkerCrashed,
    SpawnFailure,
    ForwardingError
)

from streampool.core.models import UnitState, WorkUnit
from streampool.core.marker import OutputMarker
from streampool.core.workers import create_launcher, ProcessLauncher, ThreadLauncher
from streampool.core.liveness import LivenessMonitor
from streampool.core.forwarder import Forwarder
from streampool.core.scheduler import WorkerScheduler
from streampool.core.sequencer import OutputSequencer
