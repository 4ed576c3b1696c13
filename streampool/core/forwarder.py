import sys
from typing import Callable, Iterable, Optional, TextIO

from streampool.core.errors import ConfigurationError
from streampool.core.marker import write_lines


Sink = Callable[[str], None]


class Forwarder:
    """
    Aggregate output of a pool.

    Either a line-oriented text stream that published artifacts are copied
    into, or a sink callback that receives each artifact path.
    """

    def __init__(self, output: Optional[TextIO] = None, sink: Optional[Sink] = None):
        if output is not None and sink is not None:
            raise ConfigurationError("output stream and sink callback are mutually exclusive")
        self._output = output
        self.sink = sink

    @property
    def output(self) -> TextIO:
        # Resolved late so a replaced sys.stdout is honoured
        return self._output if self._output is not None else sys.stdout

    def emit(self, lines: Iterable) -> int:
        """Write produced items straight to the output stream."""
        return write_lines(lines, self.output)

    def forward(self, path: str) -> None:
        """Pass one published artifact on to the aggregate output."""
        if self.sink is not None:
            self.sink(path)
            return
        out = self.output
        with open(path, 'r', encoding='utf-8', errors='surrogateescape') as f:
            for line in f:
                out.write(line)
        out.flush()
