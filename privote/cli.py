"""Command line interface for the Privote pipeline.

Commands:
    worker          Run the submission and/or tally worker pools
    init-db         Create the PostgreSQL schema
    submit-vote     Record a vote and enqueue its submission
    vote-status     Show a vote record
    enqueue-tally   Enqueue the tally job of a closed proposal
    job-status      Show a submission or tally job
    queue-stats     Show job counts per kind and state
    tally           Show the encrypted tally of a proposal
    decrypt-tally   Publicly decrypt the tally of a proposal

Configuration is read from the environment (and a .env file, if present).
See privote.config and privote.bootstrap.pipeline for the variables.
"""

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Optional, TypeVar
from uuid import UUID

import typer
from dotenv import load_dotenv
from prometheus_client import start_http_server
from rich.console import Console
from rich.table import Table

from privote import __version__
from privote.bootstrap.logging import configure_structlog
from privote.bootstrap.pipeline import PipelineComponents, build_pipeline
from privote.domain.errors import PrivoteError
from privote.domain.models.job import JobKind
from privote.infrastructure.observability import (
    generate_correlation_id,
    set_correlation_id,
)

T = TypeVar("T")


class OutputFormat(str, Enum):
    """Output format options."""

    text = "text"
    json = "json"


class WorkerKind(str, Enum):
    """Which worker pools to run."""

    all = "all"
    submission = "submission"
    tally = "tally"


app = typer.Typer(
    name="privote",
    help="Encrypted vote submission and tally pipeline",
    add_completion=False,
)
console = Console()
error_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"privote version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Privote pipeline operations."""
    load_dotenv()
    configure_structlog(level="WARNING", stream=sys.stderr)


def _run(action: Callable[[PipelineComponents], Awaitable[T]]) -> T:
    """Build the pipeline, run one action against it, then close it."""

    async def runner() -> T:
        set_correlation_id(generate_correlation_id())
        components = await build_pipeline()
        try:
            return await action(components)
        finally:
            await components.close()

    try:
        return asyncio.run(runner())
    except PrivoteError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e
    except ValueError as e:
        error_console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=2) from e


def _parse_uuid(value: str, name: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as e:
        raise typer.BadParameter(f"{name} must be a UUID") from e


def _print_mapping(
    data: dict[str, Any], title: str, output_format: OutputFormat
) -> None:
    if output_format is OutputFormat.json:
        typer.echo(json.dumps(data, default=str, indent=2))
        return
    table = Table(title=title, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@app.command()
def worker(
    kind: WorkerKind = typer.Option(
        WorkerKind.all, "--kind", "-k", help="Worker pools to run"
    ),
    metrics_port: int = typer.Option(
        0, "--metrics-port", help="Serve Prometheus metrics on this port (0: off)"
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Log level"),
) -> None:
    """Run worker pools until SIGINT/SIGTERM."""
    from privote.workers.runner import run_workers

    configure_structlog(level=log_level)
    kinds = (
        (JobKind.SUBMISSION, JobKind.TALLY)
        if kind is WorkerKind.all
        else (JobKind(kind.value),)
    )

    async def run() -> None:
        components = await build_pipeline()
        if metrics_port:
            start_http_server(metrics_port, registry=components.metrics.get_registry())
        await run_workers(components, kinds)

    try:
        asyncio.run(run())
    except ValueError as e:
        error_console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=2) from e


@app.command("init-db")
def init_db() -> None:
    """Create tables and indexes in the DATABASE_URL database."""
    from privote.bootstrap.database import close_database_engine, get_engine
    from privote.infrastructure.adapters.persistence import create_schema

    async def run() -> None:
        try:
            await create_schema(get_engine())
        finally:
            await close_database_engine()

    try:
        asyncio.run(run())
    except ValueError as e:
        error_console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=2) from e
    console.print("[green]Schema ready[/green]")


@app.command("submit-vote")
def submit_vote(
    proposal_id: str = typer.Argument(..., help="Proposal id"),
    subject_id: str = typer.Argument(..., help="Voting subject id"),
    ciphertext: str = typer.Argument(..., help="Ciphertext handle(s) or blob"),
    proof: Optional[str] = typer.Option(None, "--proof", help="Input proof (hex)"),
    token: Optional[str] = typer.Option(
        None, "--token", help="Idempotency token"
    ),
    output_format: OutputFormat = typer.Option(
        OutputFormat.text, "--format", "-o", help="Output format: text or json"
    ),
) -> None:
    """Record a vote and enqueue its ledger submission."""
    pid = _parse_uuid(proposal_id, "proposal_id")
    sid = _parse_uuid(subject_id, "subject_id")

    async def action(components: PipelineComponents) -> dict[str, Any]:
        ticket = await components.submission_service.enqueue_submission(
            pid, sid, ciphertext, proof_ref=proof, idempotency_token=token
        )
        return {
            "vote_id": str(ticket.vote_record_id),
            "job_id": ticket.job_id,
            "duplicate": ticket.is_duplicate,
            "status": ticket.status.value,
        }

    _print_mapping(_run(action), "Vote accepted", output_format)


@app.command("vote-status")
def vote_status(
    vote_id: str = typer.Argument(..., help="Vote record id"),
    output_format: OutputFormat = typer.Option(
        OutputFormat.text, "--format", "-o", help="Output format: text or json"
    ),
) -> None:
    """Show the status of a vote record."""
    vid = _parse_uuid(vote_id, "vote_id")

    async def action(components: PipelineComponents) -> dict[str, Any]:
        record = await components.submission_service.get_vote_status(vid)
        return {
            "vote_id": str(record.id),
            "proposal_id": str(record.proposal_id),
            "status": record.status.value,
            "job_id": record.job_id,
            "tx_ref": record.ledger_tx_ref,
            "block_ref": record.ledger_block_ref,
            "error": record.error_detail,
            "attempts": record.attempts,
        }

    _print_mapping(_run(action), "Vote", output_format)


@app.command("enqueue-tally")
def enqueue_tally(
    proposal_id: str = typer.Argument(..., help="Proposal id"),
) -> None:
    """Enqueue the tally job of a proposal."""
    pid = _parse_uuid(proposal_id, "proposal_id")

    async def action(components: PipelineComponents) -> str:
        return await components.tally_service.enqueue_tally(pid)

    job_id = _run(action)
    console.print(f"Tally job enqueued: [bold]{job_id}[/bold]")


@app.command("job-status")
def job_status(
    job_id: str = typer.Argument(..., help="Job id"),
    output_format: OutputFormat = typer.Option(
        OutputFormat.text, "--format", "-o", help="Output format: text or json"
    ),
) -> None:
    """Show a submission or tally job."""

    async def action(components: PipelineComponents) -> dict[str, Any] | None:
        snapshot = await components.submission_service.get_job_status(job_id)
        return snapshot.to_dict() if snapshot is not None else None

    data = _run(action)
    if data is None:
        error_console.print(f"[red]Job {job_id} not found[/red]")
        raise typer.Exit(code=1)
    _print_mapping(data, f"Job {job_id}", output_format)


@app.command("queue-stats")
def queue_stats(
    output_format: OutputFormat = typer.Option(
        OutputFormat.text, "--format", "-o", help="Output format: text or json"
    ),
) -> None:
    """Show job counts per kind and state."""

    async def action(components: PipelineComponents) -> dict[str, dict[str, int]]:
        return await components.queue.stats()

    stats = _run(action)
    if output_format is OutputFormat.json:
        typer.echo(json.dumps(stats, indent=2))
        return
    states = sorted({state for counts in stats.values() for state in counts})
    table = Table(title="Queue")
    table.add_column("Kind", style="cyan")
    for state in states:
        table.add_column(state, justify="right")
    for kind, counts in stats.items():
        table.add_row(kind, *(str(counts.get(state, 0)) for state in states))
    console.print(table)


@app.command()
def tally(
    proposal_id: str = typer.Argument(..., help="Proposal id"),
    output_format: OutputFormat = typer.Option(
        OutputFormat.text, "--format", "-o", help="Output format: text or json"
    ),
) -> None:
    """Show the encrypted tally of a proposal."""
    pid = _parse_uuid(proposal_id, "proposal_id")

    async def action(components: PipelineComponents) -> dict[str, Any]:
        result = await components.tally_service.get_encrypted_tally(pid)
        return {
            "proposal_id": str(result.proposal_id),
            "encrypted_tally": result.encrypted_tally,
            "vote_count": result.vote_count,
            "closed": result.closed,
            "ends_at": result.ends_at.isoformat(),
        }

    _print_mapping(_run(action), "Encrypted tally", output_format)


@app.command("decrypt-tally")
def decrypt_tally(
    proposal_id: str = typer.Argument(..., help="Proposal id"),
    output_format: OutputFormat = typer.Option(
        OutputFormat.text, "--format", "-o", help="Output format: text or json"
    ),
) -> None:
    """Publicly decrypt the tally of a proposal through the relayer."""
    pid = _parse_uuid(proposal_id, "proposal_id")

    async def action(components: PipelineComponents) -> dict[str, Any]:
        result = await components.tally_service.decrypt_tally_public(pid)
        return {
            "proposal_id": str(result.proposal_id),
            "clear_value": result.clear_value,
            "vote_count": result.vote_count,
            "decryption_proof": result.decryption_proof,
        }

    _print_mapping(_run(action), "Public tally", output_format)


if __name__ == "__main__":
    app()
