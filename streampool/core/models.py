import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class UnitState(Enum):
    """Lifecycle of a work unit."""
    SUBMITTED = "submitted"
    RUNNING = "running"
    PUBLISHED = "published"
    CONSUMED = "consumed"
    CRASHED = "crashed"


TERMINAL_STATES = (UnitState.CONSUMED, UnitState.CRASHED)


@dataclass
class WorkUnit:
    """One submitted job, numbered by submission order."""
    sequence: int
    provisional_path: str
    final_path: str
    handle: Any = None
    state: UnitState = UnitState.SUBMITTED
    error: Optional[str] = None
    submitted_at: float = field(default_factory=time.monotonic)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def elapsed(self) -> float:
        """Seconds since the unit was submitted."""
        return time.monotonic() - self.submitted_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging and diagnostics."""
        return {
            'sequence': self.sequence,
            'state': self.state.value,
            'provisional_path': self.provisional_path,
            'final_path': self.final_path,
            'handle': getattr(self.handle, 'pid', self.handle),
            'error': self.error,
            'elapsed': round(self.elapsed, 3),
        }
