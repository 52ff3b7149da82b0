"""
Assessment Pipeline CLI Application.

Provides a command-line host for running the assessor over an assignment
document and managing the assessment cache.
"""

from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from assessment_pipeline.assessor import (
    AssessmentCache,
    AssessmentRequestOrchestrator,
    HttpTransport,
    RunSummary,
)
from assessment_pipeline.config import get_settings
from assessment_pipeline.errors import AbortRequestError, BackendBuildError
from assessment_pipeline.loader import AssignmentLoadError, load_assignment, save_assignment
from assessment_pipeline.logging_config import configure_logging
from assessment_pipeline.models import Assignment

# Create Typer app
app = typer.Typer(
    name="assessment-pipeline",
    help="Batch LLM assessment of student work against reference answers",
    add_completion=False,
)

console = Console()


class ConsoleProgressReporter:
    """ProgressReporter that prints to the terminal."""

    def __init__(self, console: Console, verbose: bool = False):
        self._console = console
        self._verbose = verbose

    def update(self, message: str) -> None:
        self._console.print(f"[dim]{message}[/dim]")

    def log_error(self, message: str, details: Any = None) -> None:
        self._console.print(f"[red]Error:[/red] {message}")
        if self._verbose and details is not None:
            self._console.print(f"[dim]{details}[/dim]")

    def notify(self, message: str) -> None:
        self._console.print(f"[yellow]⚠ {message}[/yellow]")


@app.command()
def assess(
    assignment_file: Annotated[Path, typer.Argument(help="Path to the assignment JSON")],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Where to write the assessed assignment"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show detailed output"),
    ] = False,
) -> None:
    """
    Assess every outstanding student response in an assignment.

    Blank responses and responses already in the cache are resolved without
    calling the assessor. The assessed assignment is written back in place
    unless --output is given.
    """
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level)

    try:
        assignment = load_assignment(assignment_file)
    except AssignmentLoadError as e:
        console.print(f"[red]Load Error:[/red] {e}")
        raise typer.Exit(1)

    progress = ConsoleProgressReporter(console, verbose)
    with (
        AssessmentCache.from_settings(settings) as cache,
        HttpTransport(timeout=settings.request_timeout_seconds) as transport,
    ):
        orchestrator = AssessmentRequestOrchestrator.from_settings(
            settings, transport=transport, cache=cache, progress=progress
        )
        try:
            summary = orchestrator.assess(assignment)
        except AbortRequestError as e:
            console.print(f"[red]Aborted:[/red] {e}. Check the API key and backend URL.")
            raise typer.Exit(1)
        except BackendBuildError as e:
            console.print(f"[red]Backend Error:[/red] {e}")
            raise typer.Exit(1)

    _display_results(assignment, summary, verbose)

    saved_path = save_assignment(assignment, output or assignment_file)
    console.print(f"\n[green]Assignment saved to:[/green] {saved_path}")


@app.command()
def clear_cache() -> None:
    """Remove every cached assessment."""
    settings = get_settings()
    with AssessmentCache.from_settings(settings) as cache:
        cache.clear()
    console.print("[green]✓ Assessment cache cleared[/green]")


@app.command()
def health() -> None:
    """
    Show the effective configuration.

    Verifies that settings load and validate.
    """
    try:
        settings = get_settings()
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    console.print("[bold]Assessment Pipeline Health Check[/bold]\n")
    console.print(f"  Backend URL: {settings.assessor_backend_url}")
    console.print(f"  Batch Size: {settings.assessor_batch_size}")
    console.print(f"  Max Retries: {settings.max_request_retries}")
    console.print(f"  Cache Backend: {settings.cache_backend.value}")
    console.print("\n[green]Configuration is valid[/green]")


def _display_results(assignment: Assignment, summary: RunSummary, verbose: bool = False) -> None:
    """Display run counts and, if verbose, every student's scores."""
    console.print(
        Panel(
            f"Requests sent: [bold]{summary.requests}[/bold]\n"
            f"Assessed: {summary.assessed}  Cache hits: {summary.cache_hits}  "
            f"Duplicates: {summary.duplicates}\n"
            f"Not attempted: {summary.not_attempted}  Skipped: {summary.skipped}  "
            f"Failed: {len(summary.failed_uids)}",
            title="Assessment Run",
        )
    )

    if summary.failed_uids:
        console.print(f"[yellow]⚠ No assessment for: {', '.join(summary.failed_uids)}[/yellow]")

    if verbose:
        table = Table(title="Assessments")
        table.add_column("Student", style="cyan")
        table.add_column("Task")
        table.add_column("Completeness", justify="right")
        table.add_column("Accuracy", justify="right")
        table.add_column("SPaG", justify="right")

        for submission in assignment.submissions:
            for task_id, item in submission.items.items():
                if item.assessment is None:
                    table.add_row(submission.student_name or submission.student_id, task_id, "-", "-", "-")
                    continue
                table.add_row(
                    submission.student_name or submission.student_id,
                    task_id,
                    str(item.assessment.completeness.score),
                    str(item.assessment.accuracy.score),
                    str(item.assessment.spag.score),
                )

        console.print(table)


if __name__ == "__main__":
    app()
