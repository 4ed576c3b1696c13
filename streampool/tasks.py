"""
Example tasks for the command line.

A task receives one batch of records and returns the lines to emit for it.
Tasks are module-level functions so process workers can pickle them.
"""

from typing import Iterator, List


def passthrough(batch: List[str]) -> Iterator[str]:
    """Emit every record unchanged."""
    for record in batch:
        yield record


def uppercase(batch: List[str]) -> Iterator[str]:
    for record in batch:
        yield record.upper()


def count_lines(batch: List[str]) -> List[str]:
    """Emit the number of records in the batch."""
    return [str(len(batch))]
