"""
Pipeline helpers.

Batches a record stream into work units, runs them through a StreamPool and
reports progress while ordered output is being emitted.
"""

import time
import logging
from itertools import islice
from typing import Any, Callable, Iterable, Iterator, List, Optional, TextIO

from streampool.core.forwarder import Sink
from streampool.core.models import WorkUnit
from streampool.pool import StreamPool

# Use the logger for this specific module
logger = logging.getLogger(__name__)


def chunk_records(records: Iterable[Any], batch_size: int) -> Iterator[List[Any]]:
    """
    Divide a record stream into batches of at most batch_size records.

    Args:
        records: Any iterable, consumed lazily.
        batch_size: Maximum size of each batch. Values below 1 are treated as 1.

    Yields:
        Lists of consecutive records.
    """
    if batch_size <= 0:
        batch_size = 1
    iterator = iter(records)
    while True:
        batch = list(islice(iterator, batch_size))
        if not batch:
            return
        yield batch


class ProgressReporter:
    """Logs how many units have been consumed, at most once per interval."""

    def __init__(self, report_interval: float = 5.0, total: Optional[int] = None):
        """
        Initialize progress reporter.

        Args:
            report_interval: Minimum interval between progress reports in seconds
            total: Expected number of units, if known
        """
        self.report_interval = max(0.1, report_interval)
        self.total = total
        self.completed = 0
        self.start_time = time.monotonic()
        self.last_report_time = self.start_time

    def increment(self, unit: Optional[WorkUnit] = None, count: int = 1) -> None:
        if count <= 0:
            return
        self.completed += count
        current_time = time.monotonic()
        done = self.total is not None and self.completed >= self.total
        if current_time - self.last_report_time >= self.report_interval or done:
            self.report(current_time)
            self.last_report_time = current_time

    def report(self, current_time: Optional[float] = None) -> None:
        if current_time is None:
            current_time = time.monotonic()
        elapsed = current_time - self.start_time
        rate = self.completed / elapsed if elapsed > 0 else 0.0
        if self.total:
            percent = (self.completed / self.total) * 100
            logger.info(f"Progress: {self.completed}/{self.total} units ({percent:.1f}%) "
                        f"in {elapsed:.1f}s ({rate:.1f} units/s)")
        else:
            logger.info(f"Progress: {self.completed} units in {elapsed:.1f}s ({rate:.1f} units/s)")


def stream_parallel(func: Callable[[List[Any]], Iterable],
                    records: Iterable[Any],
                    batch_size: int = 1000,
                    concurrency: Optional[int] = None,
                    output: Optional[TextIO] = None,
                    sink: Optional[Sink] = None,
                    track_progress: bool = True,
                    report_interval: float = 5.0,
                    **pool_options) -> int:
    """
    Convenience function to process a record stream in parallel, in order.

    Args:
        func: Task applied to each batch; returns the batch's output lines.
            Must be picklable for process workers.
        records: Records to process, consumed lazily.
        batch_size: Number of records per work unit.
        concurrency: Number of workers. Defaults to CPU count.
        output: Text stream for the ordered output. Defaults to stdout.
        sink: Callback receiving each artifact path instead of output.
        track_progress: Whether to log progress using logger.info.
        report_interval: Minimum seconds between progress reports.
        **pool_options: Further StreamPool keyword arguments.

    Returns:
        Number of work units processed.

    Raises:
        StreamPoolError: If a unit crashed, stopped responding or could not be forwarded.
    """
    progress = ProgressReporter(report_interval) if track_progress else None
    on_consumed = progress.increment if progress else None

    logger.info(f"Streaming records in batches of {batch_size} using {concurrency or 'default'} workers...")
    start_time = time.monotonic()
    with StreamPool(concurrency=concurrency, output=output, sink=sink,
                    on_consumed=on_consumed, **pool_options) as pool:
        for batch in chunk_records(records, batch_size):
            pool.submit(func, batch)
            if pool.serial:
                if progress:
                    progress.increment()
            else:
                pool.drain()
    units = pool.scheduler.submitted
    if progress:
        progress.report()
    logger.info(f"Parallel streaming of {units} units finished in {time.monotonic() - start_time:.2f} seconds.")
    return units
