"""CLI entry point for the sourcemap upload tool.

Provides commands:
  - upload: Upload JavaScript sourcemaps found under a directory
  - config: Manage configuration (API key)
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from srcmap import __version__
from srcmap.config import (
    ConfigurationError,
    get_api_key,
    is_minified_path_prefix_valid,
    load_upload_config,
    set_api_key,
    validate_upload_config,
)
from srcmap.models import BatchSummary, UploadConfig

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Upload JavaScript sourcemaps so front-end stack traces can be un-minified",
    rich_markup_mode="rich",
)
console = Console()

# Config command group
config_app = typer.Typer(help="Manage configuration (API key)")
app.add_typer(config_app, name="config")


def _configure_logging(verbose: bool) -> None:
    if not verbose:
        return
    package_logger = logging.getLogger("srcmap")
    if any(isinstance(h, RichHandler) for h in package_logger.handlers):
        return
    package_logger.addHandler(RichHandler(console=console, show_path=False))
    package_logger.setLevel(logging.DEBUG)


@app.command()
def upload(
    base_path: Annotated[
        str,
        typer.Argument(help="Directory to search for *js.map files"),
    ],
    service: Annotated[
        Optional[str],
        typer.Option("--service", help="Service name the sourcemaps belong to"),
    ] = None,
    release_version: Annotated[
        Optional[str],
        typer.Option("--release-version", help="Release version of the service"),
    ] = None,
    minified_path_prefix: Annotated[
        Optional[str],
        typer.Option(
            "--minified-path-prefix",
            help="URL or absolute path the minified files are served from",
        ),
    ] = None,
    project_path: Annotated[
        str,
        typer.Option("--project-path", help="Project path prefix of the sources"),
    ] = "",
    repository_url: Annotated[
        Optional[str],
        typer.Option("--repository-url", help="Override the git remote URL"),
    ] = None,
    disable_git: Annotated[
        bool,
        typer.Option("--disable-git", help="Do not attach git repository data"),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Run every check without uploading"),
    ] = False,
    max_concurrency: Annotated[
        Optional[int],
        typer.Option("--max-concurrency", help="Max concurrent uploads [default: 20]"),
    ] = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to upload_config.json"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logs"),
    ] = False,
) -> None:
    """Upload all sourcemaps under BASE_PATH with their minified file URL.

    The API key is read from the system keyring (service: srcmap), then
    from the KF_API_KEY environment variable.
    To set it:  srcmap config set-api-key YOUR_KEY
    """
    _configure_logging(verbose)

    try:
        config = load_upload_config(config_path)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    config.service = service or config.service
    config.release_version = release_version or config.release_version
    config.project_path = project_path or config.project_path
    config.dry_run = dry_run
    config.cli_version = __version__
    if max_concurrency is not None:
        config.max_concurrency = max_concurrency

    if not minified_path_prefix:
        console.print("[red]Missing minified path[/red]")
        raise typer.Exit(code=1)
    if not is_minified_path_prefix_valid(minified_path_prefix):
        console.print(
            "[red]--minified-path-prefix should either be an URL "
            "(such as \"http://example.com/static\") or an absolute path "
            "starting with a / such as \"/static\"[/red]"
        )
        raise typer.Exit(code=1)

    try:
        config.api_key = get_api_key()
    except ConfigurationError as e:
        if not dry_run:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(code=1)

    try:
        validate_upload_config(config)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    base_path = posixpath.normpath(base_path)
    console.print(
        Panel(
            f"Starting upload with concurrency {config.max_concurrency}.\n"
            f"Will look for sourcemaps in [bold]{base_path}[/bold]\n"
            f"Will match JS files for errors on files starting with "
            f"[bold]{minified_path_prefix}[/bold]\n"
            f"version: {config.release_version} service: {config.service} "
            f"project path: {config.project_path or '-'}",
            title="\\[DRYRUN] Sourcemap Upload" if dry_run else "Sourcemap Upload",
        )
    )

    try:
        summary = asyncio.run(
            _run_upload(
                config,
                base_path,
                minified_path_prefix,
                use_git=not disable_git,
                repository_url=repository_url,
            )
        )
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    _print_summary(summary, dry_run)


async def _run_upload(
    config: UploadConfig,
    base_path: str,
    minified_path_prefix: str,
    use_git: bool,
    repository_url: str | None,
) -> BatchSummary:
    # Import upload modules here to keep CLI startup fast for --help
    from srcmap.git import get_repository_data
    from srcmap.scanner import scan_sourcemaps
    from srcmap.upload.orchestrator import UploadOrchestrator
    from srcmap.upload.progress import UploadProgressTracker
    from srcmap.upload.transport import ClientCache, RequestBuilder

    jobs = scan_sourcemaps(base_path, minified_path_prefix)
    tracker = UploadProgressTracker(total_files=len(jobs), console=console)

    async with ClientCache(timeout=config.timeout_seconds) as clients:
        request = None if config.dry_run else RequestBuilder(config, clients)
        orchestrator = UploadOrchestrator(config, request, observer=tracker)
        if use_git:
            # git subprocesses and file hashing stay off the event loop
            await asyncio.to_thread(
                orchestrator.add_repository_data,
                jobs,
                lambda: get_repository_data(repository_url=repository_url),
            )
        with tracker:
            return await orchestrator.run(jobs)


def _print_summary(summary: BatchSummary, dry_run: bool) -> None:
    summary_table = Table(title="Upload Summary")
    summary_table.add_column("Metric", style="bold")
    summary_table.add_column("Count", justify="right")

    summary_table.add_row("Total sourcemaps", str(summary.total))
    summary_table.add_row("Succeeded", f"[green]{summary.succeeded}[/green]")
    summary_table.add_row("Failed", f"[red]{summary.failed}[/red]")
    summary_table.add_row("Skipped", f"[yellow]{summary.skipped}[/yellow]")
    summary_table.add_row("Elapsed", f"{summary.elapsed_seconds:.2f}s")

    title = "Dry Run Complete" if dry_run else "Upload Complete"
    console.print(Panel(summary_table, title=title))


@config_app.command("set-api-key")
def config_set_api_key(
    api_key: Annotated[str, typer.Argument(help="Intake API key")],
) -> None:
    """Store the API key in the system keyring."""
    set_api_key(api_key)
    console.print("[green]API key saved to system keyring.[/green]")


@config_app.command("show")
def config_show(
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to upload_config.json"),
    ] = None,
) -> None:
    """Display the effective upload configuration."""
    try:
        config = load_upload_config(config_path)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    try:
        get_api_key()
        key_status = "[green]configured[/green]"
    except ConfigurationError:
        key_status = "[red]missing[/red]"

    table = Table(title="Upload Configuration")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    table.add_row("API key", key_status)
    table.add_row("Base URL", config.base_url)
    table.add_row("Override URL", str(config.override_url))
    table.add_row("Max concurrency", str(config.max_concurrency))
    table.add_row("Max attempts", str(config.max_attempts))
    table.add_row("Terminal status codes", ", ".join(map(str, sorted(config.terminal_status_codes))))
    table.add_row("Timeout", f"{config.timeout_seconds}s")
    console.print(table)


if __name__ == "__main__":
    app()
