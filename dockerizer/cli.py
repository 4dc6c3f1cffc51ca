"""CLI entry point for the dockerizer agent.

Commands:
- dockerizer agent: Generate, build and test Docker configuration with retries
- dockerizer tools: List the tools available to the agent
- dockerizer validate: Check a Dockerfile against the syntax/content inspectors
- dockerizer check-command: Run a command line through the command validator
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from dockerizer import __version__
from dockerizer.core.cancellation import CancellationToken
from dockerizer.core.collaborators import basic_scan, load_object
from dockerizer.core.config import load_config
from dockerizer.core.dispatcher import ToolDispatcher
from dockerizer.core.engine import DockerizeAgent
from dockerizer.core.errors import DisallowedCommandError
from dockerizer.core.events import EventStream
from dockerizer.core.inspectors import ContentInspector, build_default_pipeline, validate_dockerfile
from dockerizer.core.models import AgentEvent, EventType, RunResult
from dockerizer.core.tools import build_default_registry
from dockerizer.sandbox.commands import CommandValidator
from dockerizer.sandbox.executor import require_docker

console = Console()

EVENT_STYLES = {
    EventType.START: "bold cyan",
    EventType.ANALYZING: "cyan",
    EventType.GENERATING: "blue",
    EventType.BUILDING: "yellow",
    EventType.TESTING: "magenta",
    EventType.FIXING: "yellow",
    EventType.SUCCESS: "bold green",
    EventType.ERROR: "red",
    EventType.COMPLETE: "bold",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
        force=True,
    )


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Dockerizer - AI-assisted Docker configuration agent.

    Generated files are written inside the project directory only, and the
    agent may only run validated docker/docker-compose commands.
    """
    _configure_logging(verbose)


# --- agent ---


def _render_event(event: AgentEvent) -> None:
    style = EVENT_STYLES.get(event.type, "white")
    console.print(f"[{style}]{event.type.value:>10}[/{style}]  {event.message}")
    if event.type in (EventType.FIXING, EventType.ERROR) and isinstance(event.data, str):
        first_line = event.data.strip().splitlines()[0] if event.data.strip() else ""
        if first_line:
            console.print(f"            [dim]{first_line}[/dim]")


def _render_summary(result: RunResult) -> None:
    table = Table(title="Attempts")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Result")
    table.add_column("Duration", justify="right")
    table.add_column("Error", style="dim", overflow="fold")

    for attempt in result.attempts:
        status = "[green]success[/green]" if attempt.success else "[red]failed[/red]"
        error = attempt.error.strip().splitlines()[0] if attempt.error.strip() else ""
        table.add_row(str(attempt.number), status, f"{attempt.duration:.1f}s", error)
    console.print(table)

    if result.success and result.final_output is not None:
        files = ", ".join(result.final_output.as_dict())
        console.print(
            Panel(
                f"[green]Docker configuration generated![/green]\nFiles: {files}",
                title="Status",
            )
        )
    elif result.cancelled:
        console.print(Panel("[yellow]Run cancelled[/yellow]", title="Status"))
    else:
        console.print(
            Panel(
                f"[red]Failed after {len(result.attempts)} attempt(s)[/red]",
                title="Status",
            )
        )


@main.command()
@click.argument(
    "path",
    default=".",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
)
@click.option("--generator", "generator_ref", help="AI generator as 'package.module:attribute'")
@click.option("--detector", "detector_ref", help="Detection pipeline as 'package.module:attribute'")
@click.option("--max-attempts", type=click.IntRange(min=1), help="Maximum attempts")
@click.option("--instructions", "-i", help="Extra instructions for the generator")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Config file (default: search .dockerizer.yml and friends)",
)
@click.option("--timeout", type=click.IntRange(min=1), help="Overall run timeout in seconds")
@click.option("--enable-repetition", is_flag=True, help="Reject identical repeated tool calls")
@click.option("--enable-content", is_flag=True, help="Reject placeholder text and keyword typos")
def agent(
    path: Path,
    generator_ref: str | None,
    detector_ref: str | None,
    max_attempts: int | None,
    instructions: str | None,
    config_path: Path | None,
    timeout: int | None,
    enable_repetition: bool,
    enable_content: bool,
) -> None:
    """Generate, build and test Docker configuration for PATH."""
    try:
        config = load_config(config_path)
        generator_ref = generator_ref or config.generator
        detector_ref = detector_ref or config.detector
        if not generator_ref:
            raise click.UsageError(
                "No generator configured. Use --generator or set DOCKERIZER_GENERATOR."
            )

        require_docker()
        generator = load_object(generator_ref)
        detector = load_object(detector_ref) if detector_ref else None

        inspector_settings = config.inspectors.model_copy(
            update={
                "repetition": config.inspectors.repetition or enable_repetition,
                "content": config.inspectors.content or enable_content,
            }
        )
        registry = build_default_registry(path, pipeline=detector, settings=config.sandbox)
        dispatcher = ToolDispatcher(registry, build_default_pipeline(inspector_settings))
        events = EventStream()
        dockerize = DockerizeAgent(
            generator,
            dispatcher,
            events,
            max_attempts=max_attempts or config.agent.max_attempts,
            image_tag=config.agent.image_tag,
            test_wait_seconds=config.agent.test_wait_seconds,
        )

        token = CancellationToken.with_timeout(timeout or config.agent.timeout_seconds)
        root = path.resolve()
        scan_result = detector.scan(root, token) if detector else basic_scan(root)
        run_instructions = instructions if instructions is not None else config.agent.instructions

        console.print(Panel(f"Dockerizing [cyan]{root}[/cyan]", title="Agent"))

        outcome: dict[str, RunResult] = {}
        failure: list[Exception] = []

        def _worker() -> None:
            try:
                outcome["result"] = dockerize.run(token, scan_result, run_instructions)
            except Exception as e:  # re-raised on the main thread
                failure.append(e)

        worker = threading.Thread(target=_worker, name="dockerizer-agent", daemon=True)
        worker.start()
        try:
            while worker.is_alive():
                event = events.get(timeout=0.1)
                if event is not None:
                    _render_event(event)
        except KeyboardInterrupt:
            console.print("[yellow]Interrupted, cancelling run...[/yellow]")
            token.cancel("interrupted")
        worker.join()
        for event in events.drain():
            _render_event(event)

        if failure:
            raise failure[0]
        result = outcome["result"]
        _render_summary(result)
        if not result.success:
            sys.exit(1)

    except click.UsageError:
        raise
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


# --- tools ---


@main.command()
def tools() -> None:
    """List the tools available to the agent."""
    registry = build_default_registry(Path.cwd())

    table = Table(title="Available Tools")
    table.add_column("Tool", style="cyan")
    table.add_column("Description", style="white")
    table.add_column("Arguments", style="green")
    for tool in registry.all_tools():
        arguments = ", ".join(tool.args_model.model_fields)
        table.add_row(tool.name, tool.description, arguments)
    console.print(table)


# --- validate ---


@main.command()
@click.argument("dockerfile", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def validate(dockerfile: Path, as_json: bool) -> None:
    """Check DOCKERFILE with the syntax and content inspectors."""
    content = dockerfile.read_text(encoding="utf-8", errors="replace")
    issues = [str(issue) for issue in validate_dockerfile(content)]
    content_reason = ContentInspector().inspect(
        "file_write", {"path": dockerfile.name, "content": content}
    )
    if content_reason:
        issues.append(content_reason)

    if as_json:
        click.echo(json.dumps({"valid": not issues, "issues": issues}, indent=2))
    elif issues:
        console.print(f"[red]✗[/red] {dockerfile}")
        for issue in issues:
            console.print(f"  [red]-[/red] {issue}")
    else:
        console.print(f"[green]✓[/green] {dockerfile} looks valid")

    if issues:
        sys.exit(1)


# --- check-command ---


@main.command("check-command")
@click.argument("command_line")
@click.option(
    "--root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    help="Sandbox root that volume mounts are checked against",
)
def check_command(command_line: str, root: Path) -> None:
    """Check COMMAND_LINE against the docker/docker-compose allowlist."""
    try:
        argv = CommandValidator(root).validate(command_line)
    except DisallowedCommandError as e:
        console.print(f"[red]Rejected:[/red] {e}")
        sys.exit(1)
    console.print(f"[green]Allowed:[/green] {' '.join(argv)}")


if __name__ == "__main__":
    main()
