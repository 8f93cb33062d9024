"""
crewgate: run crews of agents with human approval checkpoints.

Commands: crewgate run | validate | version
"""

import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape

from . import __version__
from .config import CrewConfig
from .errors import ConfigError, CrewBuildError
from .loader import load_crew
from .logger import setup_logger
from .rendering import ACCENT, DIM, ERROR, SUCCESS, WARN, set_use_unicode

console = Console()
BANNER = (
    f"[bold {ACCENT}]crewgate[/bold {ACCENT}] "
    f"[{DIM}]v{__version__} · human-gated agent crews[/{DIM}]"
)

EXIT_BELOW_THRESHOLD = 1
EXIT_BUILD_ERROR = 2


def _fail(message: str, code: int = EXIT_BUILD_ERROR) -> None:
    console.print(f"[{ERROR}]Error: {escape(message)}[/{ERROR}]")
    sys.exit(code)


@click.group()
def cli():
    """crewgate: human-gated agent crews."""


@cli.command()
@click.argument("crew_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--max-concurrency", "-c", type=click.IntRange(1, 64), default=None,
              help="Worker pool size for async tasks")
@click.option("--auto-approve", "-y", is_flag=True, help="Approve every checkpoint without asking")
@click.option("--on-timeout", type=click.Choice(["reject", "approve"]), default=None,
              help="How an unanswered approval resolves")
@click.option("--approval-timeout", type=float, default=None, help="Seconds to wait for a reviewer")
@click.option("--threshold", type=click.FloatRange(0, 100), default=0.0, show_default=True,
              help="Exit with status 1 when the success rate is below this percentage")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Write the crew result as JSON")
@click.option("--log-file", type=click.Path(dir_okay=False), default=None, help="Log file path")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def run(crew_file, max_concurrency, auto_approve, on_timeout, approval_timeout,
        threshold, output, log_file, verbose):
    """Run a crew file."""
    console.print(BANNER)
    try:
        config = CrewConfig.load(crew_file.parent)
        crew = load_crew(crew_file, console=console, config=config)
    except (ConfigError, CrewBuildError) as e:
        _fail(str(e))

    overrides = {}
    if max_concurrency is not None:
        overrides["max-concurrency"] = max_concurrency
    if auto_approve:
        overrides["auto-approve"] = True
    if on_timeout:
        overrides["on-timeout"] = on_timeout
    if approval_timeout is not None:
        overrides["approval-timeout"] = approval_timeout
    if verbose:
        overrides["verbose"] = True
    if log_file:
        overrides["log-file"] = log_file
    if overrides:
        try:
            crew.config = crew.config.merged(overrides)
        except ConfigError as e:
            _fail(str(e))

    setup_logger(crew.config)
    set_use_unicode(crew.config.use_unicode)

    crew.render_plan()
    try:
        result = crew.execute()
    except KeyboardInterrupt:
        console.print(f"\n[{ERROR}]Crew interrupted by user[/{ERROR}]")
        sys.exit(130)

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(result.to_dict(), indent=2, default=str), encoding="utf-8")
        console.print(f"  [{DIM}]Result written to {output}[/{DIM}]")

    if not result.meets(threshold):
        console.print(
            f"  [{WARN}]Success rate {result.success_rate}% is below threshold "
            f"{threshold:g}%[/{WARN}]"
        )
        sys.exit(EXIT_BELOW_THRESHOLD)


@cli.command()
@click.argument("crew_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(crew_file):
    """Check a crew file and show its execution plan."""
    try:
        crew = load_crew(crew_file, console=console)
    except (ConfigError, CrewBuildError) as e:
        _fail(str(e))
    crew.render_plan()
    console.print(
        f"  [{SUCCESS}]OK[/{SUCCESS}] [{DIM}]{len(crew.agents)} agent(s), "
        f"{len(crew.tasks)} task(s), {len(crew.plan())} layer(s)[/{DIM}]"
    )


@cli.command()
def version():
    """Show the installed version."""
    console.print(f"crewgate {__version__}")


if __name__ == "__main__":
    cli()
