"""Typer CLI for the S3 sink."""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.table import Table

from s3_sink.config.loader import load_sink_config
from s3_sink.config.models import SinkTaskConfig
from s3_sink.errors import SinkError
from s3_sink.storage.s3 import S3Storage

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="s3-sink", help="Kafka to S3 sink CLI")


def _load(config_path: str) -> SinkTaskConfig:
    try:
        return load_sink_config(Path(config_path))
    except SinkError as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        raise typer.Exit(1) from exc


@app.command()
def validate(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
) -> None:
    """Validate a sink configuration file."""
    config = _load(config_path)
    console.print(f"[green]Valid[/green]: name={config.name}")
    console.print(f"  bucket:      {config.s3.bucket} ({config.s3.region})")
    console.print(f"  topics:      {config.topics or '(none)'}")
    console.print(f"  topics_dir:  {config.topics_dir}")
    console.print(f"  format:      {config.format.format_type}")
    console.print(f"  partitioner: {config.partitioner.partitioner_type}")
    console.print(f"  flush_size:  {config.rotation.flush_size}")
    console.print(f"  kafka:       {config.kafka.bootstrap_servers}")


@app.command()
def check(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
) -> None:
    """Verify that the configured bucket exists."""
    config = _load(config_path)
    storage = S3Storage(config.s3)
    try:
        exists = storage.bucket_exists()
    except SinkError as exc:
        console.print(f"[red]Bucket check failed:[/red] {exc}")
        raise typer.Exit(1) from exc
    finally:
        storage.close()

    if not exists:
        console.print(f"[red]Bucket not found:[/red] {config.s3.bucket}")
        raise typer.Exit(1)
    console.print(f"[green]Bucket reachable:[/green] {config.s3.url}")


@app.command("ls")
def list_objects(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
    prefix: str | None = typer.Option(
        None, "--prefix", help="Key prefix (defaults to topics_dir)"
    ),
    token: str | None = typer.Option(
        None, "--token", help="Continuation token from a previous page"
    ),
) -> None:
    """List one page of objects written under a prefix."""
    config = _load(config_path)
    storage = S3Storage(config.s3)
    path = prefix if prefix is not None else config.topics_dir
    try:
        listing = storage.list(path, continuation_token=token)
    except SinkError as exc:
        console.print(f"[red]Listing failed:[/red] {exc}")
        raise typer.Exit(1) from exc
    finally:
        storage.close()

    if not listing.objects:
        console.print(f"[yellow]No objects under '{path}'[/yellow]")
        return

    table = Table(title=f"{config.s3.url}/{path}")
    table.add_column("Key", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Last modified")
    for obj in listing.objects:
        table.add_row(obj.key, str(obj.size), str(obj.last_modified or ""))
    console.print(table)

    if listing.is_truncated:
        console.print(
            f"[dim]More objects available, rerun with "
            f"--token {listing.next_continuation_token}[/dim]"
        )


@app.command()
def run(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
) -> None:
    """Consume the configured topics and write them to S3."""
    config = _load(config_path)
    if not config.topics:
        console.print("[red]No topics configured[/red]")
        raise typer.Exit(1)

    from s3_sink.runtime.consumer import SinkRunner

    console.print(f"[yellow]Starting sink:[/yellow] {config.name}")
    console.print(f"  {config.topics} → {config.s3.url}/{config.topics_dir}")

    runner = SinkRunner(config)
    try:
        asyncio.run(runner.run())
    except KeyboardInterrupt:
        runner.stop()
    except SinkError as exc:
        logger.error("cli.run_failed", error=str(exc))
        console.print(f"[red]Sink failed:[/red] {exc}")
        raise typer.Exit(1) from exc
