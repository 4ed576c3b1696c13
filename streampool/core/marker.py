"""
Output marker protocol.

A worker writes its lines to a provisional artifact and publishes them by
atomically renaming the provisional file to its final name. A file under the
final name is therefore always complete.
"""

import os
import logging
from typing import Any, Callable, Iterable, Union

from streampool.core.models import WorkUnit

logger = logging.getLogger(__name__)

RUNNING_EXT = 'part'


def format_line(item: Union[str, bytes]) -> str:
    """Render one produced item as a newline-terminated line."""
    if isinstance(item, bytes):
        item = item.decode('utf-8', errors='surrogateescape')
    elif not isinstance(item, str):
        item = str(item)
    if not item.endswith('\n'):
        item += '\n'
    return item


def write_lines(lines: Iterable[Union[str, bytes]], stream) -> int:
    """Write produced items to an open text stream. Returns the line count."""
    count = 0
    for item in lines:
        stream.write(format_line(item))
        count += 1
    return count


def write_unit(task: Callable[[Any], Iterable], state: Any,
               provisional_path: str, final_path: str) -> None:
    """
    Run a task and publish its output. Executed inside the worker.

    Args:
        task: Callable producing the unit's lines from its captured state.
        state: Captured state handed to the task.
        provisional_path: Path written while the task runs.
        final_path: Path the output is published under once complete.

    Raises:
        Any exception raised by the task. The provisional artifact is removed
        first so the unit never looks alive after a failure.
    """
    try:
        with open(provisional_path, 'w', encoding='utf-8', errors='surrogateescape') as out:
            write_lines(task(state), out)
            out.flush()
            os.fsync(out.fileno())
    except BaseException:
        try:
            os.unlink(provisional_path)
        except FileNotFoundError:
            pass
        raise
    os.replace(provisional_path, final_path)


class OutputMarker:
    """Names and inspects the artifacts of one pool namespace."""

    def __init__(self, workdir: str, pool_name: str):
        self.workdir = workdir
        self.pool_name = pool_name

    def final_path(self, sequence: int) -> str:
        return os.path.join(self.workdir, f"{sequence:06d}-{self.pool_name}")

    def provisional_path(self, sequence: int) -> str:
        return f"{self.final_path(sequence)}.{RUNNING_EXT}"

    def reserve(self, unit: WorkUnit) -> None:
        """Create the empty provisional artifact before the worker starts."""
        with open(unit.provisional_path, 'w'):
            pass

    def is_published(self, unit: WorkUnit) -> bool:
        return os.path.exists(unit.final_path)

    def is_provisional(self, unit: WorkUnit) -> bool:
        return os.path.exists(unit.provisional_path)

    def discard_provisional(self, unit: WorkUnit) -> None:
        try:
            os.unlink(unit.provisional_path)
        except FileNotFoundError:
            pass

    def discard(self, unit: WorkUnit) -> None:
        """Remove whatever artifacts a unit left behind."""
        for path in (unit.provisional_path, unit.final_path):
            try:
                os.unlink(path)
                logger.debug(f"Removed artifact {path}")
            except FileNotFoundError:
                pass
