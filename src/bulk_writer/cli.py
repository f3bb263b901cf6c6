from __future__ import annotations

import json
import queue
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, TextIO

import typer
from loguru import logger
from prometheus_client import start_http_server

from .accumulator import BatchAccumulator
from .config import get_settings
from .connection import StoreConnection
from .errors import InvalidRequestError
from .models import ImmediateRequest, parse_request
from .writer import BatchWriter

app = typer.Typer(help="bulk_writer operational CLI")

# ---------------------------
# Common options
# ---------------------------


def input_opt() -> str:
    return typer.Option("-", "--input", "-i", help="NDJSON file of records ('-' for stdin)")


def log_level_opt() -> str:
    return typer.Option("INFO", "--log-level", envvar="WRITER_LOG_LEVEL", help="loguru level")


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


@contextmanager
def _open_input(path: str) -> Iterator[TextIO]:
    if path == "-":
        yield sys.stdin
        return
    with open(Path(path), "r", encoding="utf-8") as f:
        yield f


def iter_ndjson(stream: TextIO) -> Iterator[dict]:
    """Yield one decoded object per non-blank line; undecodable lines are skipped."""
    for lineno, line in enumerate(stream, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping line {lineno}: {e}")


# ---------------------------
# Commands
# ---------------------------


@app.command("ping")
def ping(log_level: str = log_level_opt()):
    """Open one store connection and report whether it succeeded."""
    _configure_logging(log_level)
    conn = StoreConnection.from_settings(get_settings(), name="ping")
    ok = conn.connect()
    conn.close()
    typer.echo(json.dumps({"connected": ok}, indent=2))
    if not ok:
        raise typer.Exit(code=1)


@app.command("render")
def render(input_path: str = input_opt(), log_level: str = log_level_opt()):
    """Dry run: print the batched statement a set of records would produce."""
    _configure_logging(log_level)
    acc = BatchAccumulator(max_value_bytes=get_settings().max_value_bytes)
    immediate: list[str] = []
    invalid = 0

    with _open_input(input_path) as stream:
        for record in iter_ndjson(stream):
            try:
                req = parse_request(record)
            except InvalidRequestError as e:
                invalid += 1
                logger.warning(f"Invalid record: {e}")
                continue
            if isinstance(req, ImmediateRequest):
                immediate.append(req.query)
            else:
                acc.add(req.key, req.value)

    out = {
        "statement": acc.render(),
        "requests": acc.count,
        "keys": len(acc),
        "immediate": immediate,
        "invalid": invalid,
    }
    typer.echo(json.dumps(out, indent=2))


@app.command("run")
def run(
    input_path: str = input_opt(),
    writer_id: str = typer.Option("writer", "--writer-id", help="Writer name for logs/metrics"),
    metrics_port: Optional[int] = typer.Option(
        None, "--metrics-port", help="Expose Prometheus metrics on this port"
    ),
    log_level: str = log_level_opt(),
):
    """Feed NDJSON records through a writer until the input is exhausted."""
    _configure_logging(log_level)
    # pending requests must not be lost when the input ends
    settings = get_settings().model_copy(update={"flush_on_shutdown": True})

    port = metrics_port if metrics_port is not None else settings.metrics_port
    if port is not None:
        start_http_server(port)
        logger.info(f"Metrics on :{port}")

    q: queue.Queue = queue.Queue()
    writer = BatchWriter(q, settings, writer_id=writer_id)
    writer.start()

    fed = 0
    try:
        with _open_input(input_path) as stream:
            for record in iter_ndjson(stream):
                q.put(record)
                fed += 1
        # the loop dispatches each record in the same iteration it dequeues it
        while not q.empty() and writer.is_alive():
            time.sleep(settings.batch_time_window_ms / 1000.0)
    except KeyboardInterrupt:
        logger.warning("Interrupted, stopping writer")
    finally:
        writer.stop()

    h = writer.health()
    typer.echo(
        json.dumps(
            {
                "records": fed,
                "flushes": h.flushes,
                "failed_flushes": h.failed_flushes,
                "error": h.error,
            },
            indent=2,
        )
    )
    if h.error:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
