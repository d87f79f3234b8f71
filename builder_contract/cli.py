"""Thin CLI wrapper for builder_contract.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from builder_contract import __version__
from builder_contract.config import get_settings, print_settings_json

app = typer.Typer(
    name="builderctl",
    help="Build Output Contract - validate projects and run builders",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"builder-contract version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route log records through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Build Output Contract - validate projects and run builders."""
    configure_logging("DEBUG" if verbose else get_settings().log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
        return

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Cache directory:     {settings.cache_dir}")
    console.print(f"  Work root:           {settings.work_root}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Default runtime:     {settings.default_runtime}")
    console.print(f"  Dev server host:     {settings.dev_server_host}")
    console.print(f"  Blob base URL:       {settings.blob_base_url}")
    console.print()
    console.print("[bold]Concurrency:[/bold]")
    console.print(f"  Max builds:          {settings.max_concurrent_builds}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Build timeout:       {settings.build_timeout}")
    console.print(f"  Cache timeout:       {settings.prepare_cache_timeout}")
    console.print(f"  Dev server timeout:  {settings.dev_server_timeout}")
    console.print(f"  Fetch timeout:       {settings.fetch_timeout}")


@app.command()
def validate(
    path: Annotated[Path, typer.Argument(help="Project file (.json, .yaml, .yml)")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Validate a project configuration file."""
    from builder_contract.errors import InvalidConfigError, error_to_dict
    from builder_contract.project import load_project

    try:
        project = load_project(path)
    except InvalidConfigError as e:
        if json_output:
            output = {"valid": False, "error": error_to_dict(e)}
            console.print(json.dumps(output, indent=2), soft_wrap=True)
        else:
            console.print(f"[red]Invalid project: {e}[/red]")
            for err in e.errors:
                console.print(f"  - {err['loc']}: {err['msg']}")
        raise typer.Exit(code=1) from None
    except (OSError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        output = {"valid": True, "project": project.to_dict()}
        console.print(json.dumps(output, indent=2), soft_wrap=True)
        return

    console.print(f"[green]Valid project: {path}[/green]")
    for record in project.builds or []:
        console.print(f"  {record.src} -> {record.use}")


@app.command()
def builders(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List registered builders."""
    from builder_contract.builders import list_builders

    registered = list_builders()
    if json_output:
        output = [
            {
                "name": name,
                "version": builder.version,
                "prepare_cache": builder.supports_prepare_cache,
                "dev_server": getattr(builder, "supports_dev_server", False),
            }
            for name, builder in registered.items()
        ]
        console.print(json.dumps(output, indent=2), soft_wrap=True)
        return

    table = Table(title="Registered builders")
    table.add_column("Name", style="green")
    table.add_column("Version")
    table.add_column("Cache")
    table.add_column("Dev server")
    for name, builder in registered.items():
        table.add_row(
            name,
            str(builder.version),
            "yes" if builder.supports_prepare_cache else "no",
            "yes" if getattr(builder, "supports_dev_server", False) else "no",
        )
    console.print(table)


@app.command()
def build(
    directory: Annotated[Path, typer.Argument(help="Project directory")],
    project_file: Annotated[
        Path | None,
        typer.Option("--project", "-p", help="Project file (detects builders if omitted)"),
    ] = None,
    work_root: Annotated[
        Path | None,
        typer.Option("--work-root", help="Override work directory root"),
    ] = None,
    no_cache: Annotated[
        bool,
        typer.Option("--no-cache", help="Skip build cache restore and save"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build every entrypoint of a project directory."""
    from builder_contract.cache import CacheStore
    from builder_contract.errors import BuilderContractError
    from builder_contract.files import glob_files
    from builder_contract.orchestrator import build_entrypoints, plan_builds
    from builder_contract.outputs import iter_artifacts
    from builder_contract.project import detect_builders, load_project

    settings = get_settings()
    if work_root is not None:
        settings = settings.model_copy(update={"work_root": work_root})

    try:
        files = glob_files("**", directory)
        project = None
        if project_file is not None:
            project = load_project(project_file)
            records = project.builds or []
        else:
            records = detect_builders(files)
        jobs = plan_builds(
            records, files, settings.work_root, repo_root=directory, project=project
        )
    except BuilderContractError as e:
        console.print(f"[red]Error ({e.code}): {e}[/red]")
        raise typer.Exit(code=1) from None
    except (OSError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    if not jobs:
        console.print("[yellow]No entrypoints to build[/yellow]")
        raise typer.Exit(code=1)

    cache_store = None if no_cache else CacheStore(settings.cache_dir)
    outcomes = asyncio.run(build_entrypoints(jobs, settings, cache_store))
    failed = [o for o in outcomes if not o.succeeded]

    if json_output:
        output = [o.to_dict() for o in outcomes]
        console.print(json.dumps(output, indent=2, default=str), soft_wrap=True)
    else:
        table = Table(title=f"Build results ({len(outcomes)} entrypoint(s))")
        table.add_column("Entrypoint", style="green")
        table.add_column("Builder")
        table.add_column("Status")
        table.add_column("Artifacts")
        table.add_column("Duration")
        for o in outcomes:
            if o.succeeded and o.result is not None:
                status = "[green]succeeded[/green]"
                artifacts = str(sum(1 for _ in iter_artifacts(o.result)))
            else:
                status = f"[red]{o.error.code if o.error else 'failed'}[/red]"
                artifacts = "-"
            duration = f"{o.duration:.2f}s" if o.duration is not None else "-"
            table.add_row(o.entrypoint, o.use, status, artifacts, duration)
        console.print(table)
        for o in failed:
            console.print(f"[red]{o.entrypoint}: {o.error}[/red]")
        for o in outcomes:
            for warning in o.warnings:
                console.print(f"[yellow]{o.entrypoint}: {warning}[/yellow]")

    if failed:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
