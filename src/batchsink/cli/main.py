import asyncio
import json
import logging
from dataclasses import dataclass, field
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as package_version
from pathlib import Path
from typing import Annotated

import structlog
import typer
from rich import print
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from batchsink.batching.core import BatchingSink
from batchsink.cli.callbacks import load_file_callback, positive_int_callback
from batchsink.config import SinkConfig
from batchsink.exceptions import ConfigurationError, ExhaustedBatchError
from batchsink.logging import setup_logging
from batchsink.transports.base import BulkPutTransport
from batchsink.transports.http import HttpBulkPutTransport
from batchsink.utils.files import iter_jsonl_lines

log = structlog.get_logger(__name__)

app = typer.Typer(no_args_is_help=True)


@dataclass
class IngestSummary:
    written: int = 0
    skipped: int = 0
    failures: list[ExhaustedBatchError] = field(default_factory=list)

    @property
    def failed_records(self) -> int:
        return sum(len(error.records) for error in self.failures)


def build_transport(config: SinkConfig) -> BulkPutTransport:
    return HttpBulkPutTransport(config=config.transport)


def load_config(
    *,
    top_level: dict,
    buffer: dict,
    transport: dict,
) -> SinkConfig:
    base = SinkConfig.from_env(**top_level)
    return SinkConfig.load(
        base,
        buffer={**base.buffer.model_dump(), **buffer},
        transport={**base.transport.model_dump(), **transport},
    )


async def ingest_lines(config: SinkConfig, lines) -> IngestSummary:
    summary = IngestSummary()
    sink = BatchingSink(config=config, transport=build_transport(config), owns_transport=True)
    sink.on_error(summary.failures.append)
    async with sink:
        for line in lines:
            try:
                sink.write(json.loads(line) if config.object_mode else line)
            except ValueError as e:
                summary.skipped += 1
                log.warning(event="Skipping malformed line", error=str(object=e))
                continue
            summary.written += 1
            # let dispatch tasks progress between writes
            await asyncio.sleep(0)
    return summary


def print_summary(summary: IngestSummary, stream_name: str):
    table = Table(
        "Stream",
        "Written",
        "Skipped",
        "Failed batches",
        "Failed records",
        title="Ingest",
    )
    table.add_row(
        stream_name,
        str(summary.written),
        str(summary.skipped),
        str(len(summary.failures)),
        str(summary.failed_records),
    )
    console = Console()
    console.print(table)


@app.command(name="ingest")
def ingest(
    file_path: Annotated[
        Path,
        typer.Argument(
            help="JSONL file holding one message per line",
            callback=load_file_callback,
        ),
    ],
    stream_name: Annotated[
        str | None, typer.Option(help="Destination stream, defaults to BATCHSINK_STREAM_NAME")
    ] = None,
    endpoint: Annotated[
        str | None, typer.Option(help="Bulk ingestion endpoint, defaults to BATCHSINK_ENDPOINT")
    ] = None,
    size_threshold: Annotated[
        int | None,
        typer.Option(help="Flush after this many messages", callback=positive_int_callback),
    ] = None,
    timeout_ms: Annotated[
        int | None, typer.Option(help="Flush this many milliseconds after the first message")
    ] = None,
    max_retries: Annotated[
        int | None, typer.Option(help="Additional attempts after a failed bulk put")
    ] = None,
    object_mode: Annotated[
        bool,
        typer.Option(
            "--object-mode/--raw",
            help="Decode lines before writing instead of letting the sink decode them",
        ),
    ] = False,
    verbose: Annotated[bool, typer.Option("-v", "--verbose", help="Show debug logs")] = False,
):
    """Stream a JSONL file into a batching sink"""
    if verbose:
        setup_logging(level=logging.DEBUG)
    top_level = {"object_mode": object_mode}
    if stream_name is not None:
        top_level["stream_name"] = stream_name
    buffer = {
        key: value
        for key, value in {
            "size_threshold": size_threshold,
            "timeout_ms": timeout_ms,
            "max_retries": max_retries,
        }.items()
        if value is not None
    }
    transport = {"endpoint": endpoint} if endpoint is not None else {}
    try:
        config = load_config(top_level=top_level, buffer=buffer, transport=transport)
        summary = asyncio.run(ingest_lines(config=config, lines=iter_jsonl_lines(file_path)))
    except ConfigurationError as e:
        print(f"[red]Invalid configuration[/red]: {e}")
        raise typer.Exit(1)
    print_summary(summary=summary, stream_name=config.stream_name)
    if summary.failures:
        raise typer.Exit(1)


@app.command(name="config")
def show_config():
    """Show the configuration read from BATCHSINK_* environment variables"""
    try:
        config = SinkConfig.from_env()
    except ConfigurationError as e:
        print(f"[red]Invalid configuration[/red]: {e}")
        raise typer.Exit(1)
    values = "\n".join(
        [
            f"Stream Name: {config.stream_name}",
            f"Object Mode: {config.object_mode}",
            f"Partition Key: {config.partition_key or '<random per message>'}",
            f"Size Threshold: {config.buffer.size_threshold}",
            f"Timeout (ms): {config.buffer.timeout_ms}",
            f"Max Retries: {config.buffer.max_retries}",
            f"Retry Backoff (ms): {config.buffer.retry_backoff_ms}",
            f"Endpoint: {config.transport.endpoint}",
        ]
    )
    console = Console()
    console.print(Panel(values, title="batchsink", expand=False, highlight=True))


@app.command()
def version():
    """Get the version of the package"""
    try:
        typer.echo(package_version("batchsink"))
    except PackageNotFoundError:
        typer.echo("unknown")
    raise typer.Exit()
