"""DreamCard CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from dreamcard.config import ConfigError, load_config
from dreamcard.errors import DreamCardError, NotFoundError, SubmissionError
from dreamcard.observability import close_file_logging, configure_logging, get_logger
from dreamcard.styles.profiles import MOODS, SYMBOLS, StyleRegistry

if TYPE_CHECKING:
    from dreamcard.config import DreamCardConfig
    from dreamcard.runtime import Runtime

# Load environment variables from .env file
load_dotenv()

log = get_logger(__name__)

app = typer.Typer(
    name="dreamcard",
    help="DreamCard: turn a dream description into a three-panel abstract art card.",
    no_args_is_help=True,
)
console = Console()

# Global state set by the callback, used by commands
_config_path: Path | None = None

STATUS_STYLES = {
    "queued": "[dim]○[/dim] queued",
    "running": "[cyan]●[/cyan] running",
    "success": "[green]✓[/green] success",
    "failed": "[red]✗[/red] failed",
}


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log_file: Annotated[
        Path | None,
        typer.Option("--log", help="Also write every log event as JSONL to this file."),
    ] = None,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Config file (default: ./dreamcard.yaml).",
            envvar="DREAMCARD_CONFIG",
        ),
    ] = None,
) -> None:
    """DreamCard: turn a dream description into a three-panel abstract art card."""
    global _config_path
    _config_path = config
    configure_logging(verbosity=verbose, log_file=log_file)
    if log_file is not None:
        atexit.register(close_file_logging)


def _load_config() -> DreamCardConfig:
    try:
        return load_config(_config_path)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _open_runtime() -> Runtime:
    from dreamcard.runtime import open_runtime

    return open_runtime(_load_config())


@app.command()
def version() -> None:
    """Show version information."""
    from dreamcard import __version__

    console.print(f"DreamCard v{__version__}")


@app.command()
def submit(
    text: Annotated[str, typer.Argument(help="Dream description (10-1000 characters).")],
    style: Annotated[
        str, typer.Option("--style", "-s", help="Style id or alias (see 'dreamcard styles').")
    ] = "memory",
    symbol: Annotated[
        list[str] | None,
        typer.Option("--symbol", help="Recurring dream symbol; repeat for several."),
    ] = None,
    mood: Annotated[str | None, typer.Option("--mood", help="Overall mood of the dream.")] = None,
    public: Annotated[bool, typer.Option("--public", help="Make the card shareable.")] = False,
) -> None:
    """Submit a dream for generation and print its project and job ids."""
    from dreamcard.service import submit_generation

    runtime = _open_runtime()
    request = {
        "input_text": text,
        "style": style,
        "symbols": symbol or [],
        "mood": mood,
        "visibility": "public" if public else "private",
    }
    try:
        submission = asyncio.run(
            submit_generation(
                request,
                store=runtime.store,
                queue=runtime.queue,
                styles=runtime.styles,
                limits=runtime.config.limits.input_limits(),
            )
        )
    except SubmissionError as e:
        console.print(f"[red]Rejected:[/red] {e}")
        for detail in e.details:
            console.print(f"  - {detail['field']}: {detail['message']}")
        raise typer.Exit(1) from e
    finally:
        runtime.close()

    console.print(f"[green]✓[/green] Submitted project [bold]{submission.project_id}[/bold]")
    console.print(f"  Job: {submission.job_id}")
    console.print(f"  Track it with: [cyan]dreamcard status {submission.job_id}[/cyan]")


@app.command()
def worker(
    once: Annotated[
        bool, typer.Option("--once", help="Process the jobs available now, then exit.")
    ] = False,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", min=1, help="Jobs in flight (default from config)."),
    ] = None,
) -> None:
    """Run the generation worker."""
    from dreamcard.providers.base import ProviderError
    from dreamcard.providers.image import ImageProviderError
    from dreamcard.runtime import build_orchestrator, build_worker

    runtime = _open_runtime()

    async def _run() -> None:
        orchestrator = build_orchestrator(runtime)
        job_worker = build_worker(runtime, orchestrator, concurrency=concurrency)
        job_worker.install_signal_handlers()
        try:
            stats = await job_worker.run(once=once)
        finally:
            await orchestrator.close()
        console.print(
            f"Processed {stats.claimed} job(s): [green]{stats.succeeded} succeeded[/green], "
            f"{stats.skipped} skipped, [red]{stats.failed} failed[/red]"
        )

    console.print(f"[bold]DreamCard worker[/bold] ({runtime.config.providers.image} images)")
    try:
        asyncio.run(_run())
    except (DreamCardError, ProviderError, ImageProviderError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    finally:
        runtime.close()


@app.command()
def status(job_id: Annotated[str, typer.Argument(help="Job id returned by submit.")]) -> None:
    """Show the status of a job."""
    from dreamcard.service import read_status

    runtime = _open_runtime()
    try:
        report = asyncio.run(read_status(job_id, store=runtime.store, queue=runtime.queue))
    except NotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    finally:
        runtime.close()

    table = Table(title=f"Job {report.job_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Project", report.project_id)
    table.add_row("Status", STATUS_STYLES.get(report.status, report.status))
    table.add_row("Progress", f"{report.progress:.0%}")
    table.add_row("Stage", report.stage)
    if report.error:
        table.add_row("Error", f"[red]{report.error}[/red]")

    console.print()
    console.print(table)
    console.print()


@app.command()
def project(
    project_id: Annotated[str, typer.Argument(help="Project id returned by submit.")],
    as_json: Annotated[bool, typer.Option("--json", help="Print the project as JSON.")] = False,
) -> None:
    """Show a project and its panels."""
    from dreamcard.service import read_project

    runtime = _open_runtime()
    try:
        record = asyncio.run(read_project(project_id, store=runtime.store))
    except NotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    finally:
        runtime.close()

    if as_json:
        console.print_json(record.model_dump_json())
        return

    console.print()
    console.print(f"[bold]Project {record.id}[/bold] ({record.style})")
    console.print(f"  Status: {STATUS_STYLES.get(record.status, record.status)}")
    console.print(f"  Progress: {record.progress:.0%}")
    if record.error_msg:
        console.print(f"  Error: [red]{record.error_msg}[/red]")
    if record.share_slug:
        console.print(f"  Share slug: {record.share_slug}")

    table = Table(title="Panels")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Caption", style="bold")
    table.add_column("Image", style="dim")
    for panel in record.panels:
        table.add_row(str(panel.position), panel.caption, panel.image_url or "-")
    console.print()
    console.print(table)
    console.print()


@app.command()
def styles() -> None:
    """List available styles."""
    registry = StyleRegistry.load()

    table = Table(title="Styles")
    table.add_column("Id", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Aliases", style="dim")
    table.add_column("Artists")
    for profile in registry:
        table.add_row(
            profile.id, profile.name, ", ".join(profile.aliases), profile.artist_reference
        )

    console.print()
    console.print(table)
    console.print(f"\nMoods: {', '.join(MOODS)}")
    console.print(f"Symbols: {', '.join(SYMBOLS)}")
    console.print()


@app.command()
def doctor(
    as_json: Annotated[
        bool, typer.Option("--json", help="Print the health report as JSON.")
    ] = False,
) -> None:
    """Check configuration and which credentials are present."""
    from dreamcard.providers.base import ProviderError
    from dreamcard.providers.factory import PROVIDER_ENV_VARS, parse_provider_spec
    from dreamcard.service import health

    config = _load_config()
    report = health(config)
    if as_json:
        console.print_json(data=report)
        return

    console.print("[bold]DreamCard Doctor[/bold]")
    console.print()
    console.print("[bold]Configuration[/bold]")
    console.print(f"  LLM provider: {config.providers.llm}")
    console.print(f"  Image provider: {config.providers.image}")
    console.print(f"  Render mode: {config.render.mode}")
    console.print(f"  Database: {config.storage.database}")
    console.print()

    all_ok = True
    console.print("[bold]Credentials[/bold]")
    for group in ("llm", "image", "storage"):
        for name, state in report[group].items():
            if state == "configured":
                console.print(f"  [green]✓[/green] {name}")
            else:
                console.print(f"  [dim]○[/dim] {name}: not configured")

    try:
        llm_provider, _ = parse_provider_spec(config.providers.llm)
    except ProviderError as e:
        console.print(f"  [red]✗[/red] llm: {e}")
        all_ok = False
    else:
        env_var = PROVIDER_ENV_VARS.get(llm_provider)
        if env_var and report["llm"].get(env_var) != "configured":
            console.print(f"  [red]✗[/red] {llm_provider} selected but {env_var} is not set")
            all_ok = False

    image_provider = config.providers.image.partition("/")[0].lower()
    if image_provider == "replicate" and report["image"]["REPLICATE_API_TOKEN"] != "configured":
        console.print("  [red]✗[/red] replicate selected but REPLICATE_API_TOKEN is not set")
        all_ok = False

    console.print()
    if all_ok:
        console.print("[green]All checks passed![/green]")
    else:
        console.print("[yellow]Some checks failed.[/yellow]")
        raise typer.Exit(1)
