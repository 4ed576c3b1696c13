import sys
import logging
import importlib
from pathlib import Path
from typing import Callable, Optional

import typer
from tqdm import tqdm
from typing_extensions import Annotated

from streampool.config import Config, ConfigurationError
from streampool.core.errors import StreamPoolError
from streampool.pipeline import stream_parallel

app = typer.Typer(
    name="streampool",
    help="Process line-oriented record streams in parallel with ordered output.",
    add_completion=False,
    no_args_is_help=True
)


def setup_logging(verbose: bool, level: str = "INFO"):
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level, logging.INFO),
        format="[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def load_task(reference: str) -> Callable:
    """Resolve a 'module:function' reference to a callable."""
    module_name, sep, func_name = reference.partition(':')
    if not sep or not module_name or not func_name:
        raise ValueError(f"Task must be given as module:function, got {reference!r}")
    module = importlib.import_module(module_name)
    task = getattr(module, func_name, None)
    if not callable(task):
        raise ValueError(f"{reference} is not a callable")
    return task


@app.callback()
def callback():
    """Ordered parallel streaming."""


@app.command()
def run(
    input_file: Annotated[Path, typer.Argument(help="Input file, '-' for stdin")],
    task: Annotated[str, typer.Option(help="Task applied to each batch, as module:function")] = "streampool.tasks:passthrough",
    output: Annotated[Optional[Path], typer.Option(help="Output file (default: stdout)")] = None,
    config: Annotated[Optional[Path], typer.Option(help="YAML configuration file")] = None,
    workers: Annotated[Optional[int], typer.Option(help="Number of concurrent workers")] = None,
    batch_size: Annotated[Optional[int], typer.Option(help="Records per work unit")] = None,
    timeout: Annotated[Optional[float], typer.Option(help="Seconds to wait for a worker at shutdown")] = None,
    worker_type: Annotated[Optional[str], typer.Option(help="'process' or 'thread'")] = None,
    progress: bool = False,
    verbose: bool = False
):
    """Run a task over batches of input lines and write the results in input order."""
    try:
        settings = Config().load(
            str(config) if config else None,
            overrides={
                "concurrency": workers,
                "batch_size": batch_size,
                "await_timeout": timeout,
                "worker_type": worker_type,
            })
    except ConfigurationError as e:
        typer.echo(f"Configuration Error: {e}", err=True)
        raise typer.Exit(code=1)
    setup_logging(verbose, settings.get("log_level"))

    try:
        func = load_task(task)
    except (ImportError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if str(input_file) != '-' and not input_file.exists():
        typer.echo(f"Error: File {input_file} does not exist.", err=True)
        raise typer.Exit(code=1)

    source = sys.stdin if str(input_file) == '-' else open(input_file, 'r')
    sink = open(output, 'w') if output else None
    try:
        lines = tqdm(source, unit="lines", disable=not progress, file=sys.stderr)
        units = stream_parallel(func, lines,
                                batch_size=settings.get("batch_size"),
                                output=sink,
                                track_progress=progress,
                                **settings.pool_options())
    except StreamPoolError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    finally:
        if source is not sys.stdin:
            source.close()
        if sink is not None:
            sink.close()

    if output:
        typer.echo(f"Processed {units} units into {output}", err=True)


def main():
    app()


if __name__ == "__main__":
    main()
