"""CLI commands for storyflow using Typer and Rich.

Every command runs one orchestrator operation against the configured
database:
- create / list / status: project bookkeeping
- analyze / script / storyboard / assets / render: stage generation
- approve-script / approve-storyboard / approve-assets: review gate
- regenerate-asset / back: per-scene redo and back navigation
- serve: run the REST API
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Optional, TypeVar

import typer
import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from storyflow import validate_dependencies
from storyflow.config import settings
from storyflow.db import async_session, init_database, shutdown
from storyflow.orchestrator import Decision, StageOrchestrator, StoryflowError
from storyflow.pipeline import build_generators

app = typer.Typer(name="storyflow", help="Human-gated story-to-video generation pipeline")
console = Console()

T = TypeVar("T")


def _parse_uuid(project_id_str: str) -> uuid.UUID:
    try:
        return uuid.UUID(project_id_str)
    except ValueError:
        console.print(f"[red]Error:[/red] Invalid project UUID: {project_id_str}")
        raise typer.Exit(code=1)


def _run(operation: Callable[[StageOrchestrator], Awaitable[T]], spinner: Optional[str] = None) -> T:
    """Run one orchestrator operation, printing orchestrator errors in red."""

    async def _main() -> T:
        await init_database()
        orchestrator = StageOrchestrator(async_session, build_generators())
        try:
            if spinner:
                with console.status(f"[bold green]{spinner}"):
                    return await operation(orchestrator)
            return await operation(orchestrator)
        finally:
            await orchestrator.serializer.shutdown()
            await shutdown()

    try:
        return asyncio.run(_main())
    except StoryflowError as e:
        console.print(f"[red]✗ Error:[/red] {str(e)}")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print()
        console.print("[yellow]Interrupted.[/yellow]")
        raise typer.Exit(code=130)


def _get_status_color(status: str) -> str:
    """Get Rich color for a project status.

    Color coding:
    - ready: green
    - failed: red
    - review states: cyan
    - in-flight states: yellow
    - draft: dim
    """
    if status == "ready":
        return "green"
    elif status == "failed":
        return "red"
    elif status.endswith("_review"):
        return "cyan"
    elif status in ["analyzing", "generating_assets", "generating_audio", "rendering"]:
        return "yellow"
    elif status == "draft":
        return "dim"
    else:
        return "white"


def _status_display(status: str) -> str:
    color = _get_status_color(status)
    return f"[{color}]{status}[/{color}]"


def _print_decision(decision: Decision) -> None:
    console.print(f"[green]✓[/green] {decision.message}")
    console.print(f"[bold]Status:[/bold] {_status_display(decision.status)}")


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@app.command()
def create(
    topic: str = typer.Argument(..., help="Story topic"),
    language: str = typer.Option("en", "--language", "-l", help="Narration language"),
    duration: int = typer.Option(60, "--duration", "-d", help="Target duration in seconds"),
    premium: bool = typer.Option(False, "--premium/--standard", help="Use the premium image tier"),
    user_id: str = typer.Option("local", "--user", "-u", help="Owner of the project"),
):
    """Create a new draft project."""
    project = _run(lambda orch: orch.create_project(user_id, topic, language, duration, premium))
    console.print(f"[green]Created project:[/green] {project.id}")
    console.print(f"[yellow]Next:[/yellow] storyflow analyze {project.id}")


@app.command(name="list")
def list_projects(
    user_id: Optional[str] = typer.Option(None, "--user", "-u", help="Filter by owner"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="Filter by language"),
):
    """List projects, newest first."""
    projects = _run(lambda orch: orch.list_projects(user_id, status, language))

    if not projects:
        console.print("[yellow]No projects found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("Topic")
    table.add_column("Lang")
    table.add_column("Status")
    table.add_column("Cost", justify="right")
    table.add_column("Created")

    for project in projects:
        id_display = str(project.id)[:8] + "..."
        topic_display = project.topic if len(project.topic) <= 50 else project.topic[:47] + "..."
        table.add_row(
            id_display,
            topic_display,
            project.language,
            _status_display(project.status),
            f"${project.total_cost:.3f}",
            project.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def status(
    project_id: str = typer.Argument(..., help="Project UUID"),
):
    """Show detailed project status and information."""
    project_uuid = _parse_uuid(project_id)
    detail = _run(lambda orch: orch.get_project(project_uuid))
    project = detail.project

    topic_display = project.topic if len(project.topic) <= 80 else project.topic[:77] + "..."
    info_lines = [
        f"[bold]ID:[/bold] {project.id}",
        f"[bold]Topic:[/bold] {topic_display}",
        f"[bold]Status:[/bold] {_status_display(project.status)}",
        f"[bold]Language:[/bold] {project.language}",
        f"[bold]Duration:[/bold] {project.duration}s",
        f"[bold]Tier:[/bold] {'premium' if project.is_premium else 'standard'}",
        f"[bold]Total Cost:[/bold] ${project.total_cost:.4f}",
        f"[bold]Created:[/bold] {project.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
        f"[bold]Updated:[/bold] {project.updated_at.strftime('%Y-%m-%d %H:%M:%S')}",
    ]

    if detail.analysis:
        info_lines.append(f"[bold]Concept:[/bold] {detail.analysis.concept}")
    if detail.script:
        approved = " (approved)" if detail.script.approved_at else ""
        info_lines.append(
            f"[bold]Script:[/bold] {detail.script.word_count} words, "
            f"{len(detail.script.scenes)} scenes{approved}"
        )
    if detail.storyboard:
        info_lines.append(
            f"[bold]Storyboard:[/bold] {detail.storyboard.title} "
            f"({len(detail.storyboard.scenes)} scenes)"
        )
    if detail.assets:
        reused = sum(1 for a in detail.assets if a.reused)
        info_lines.append(f"[bold]Assets:[/bold] {len(detail.assets)} current, {reused} reused")
    if detail.video:
        info_lines.append(f"[bold]Output:[/bold] [green]{detail.video.url}[/green]")
    if detail.in_flight:
        info_lines.append(f"[bold]In Flight:[/bold] [yellow]{detail.in_flight}[/yellow]")
    if project.status == "failed" and project.error_message:
        info_lines.append(f"[bold]Failed From:[/bold] {project.failed_from}")
        info_lines.append(f"[bold]Error:[/bold] [red]{project.error_message}[/red]")

    panel = Panel(
        "\n".join(info_lines),
        title="[bold]Project Status[/bold]",
        border_style="blue",
    )
    console.print(panel)


# ---------------------------------------------------------------------------
# Stage generation
# ---------------------------------------------------------------------------


@app.command()
def analyze(
    project_id: str = typer.Argument(..., help="Project UUID"),
    feedback: Optional[str] = typer.Option(None, "--feedback", "-f", help="Refine the existing analysis"),
):
    """Analyze the story topic (or refine the analysis with feedback)."""
    project_uuid = _parse_uuid(project_id)
    analysis = _run(lambda orch: orch.start_analysis(project_uuid, feedback), "Analyzing story...")
    console.print(f"[green]✓[/green] Analysis complete")
    console.print(f"[bold]Concept:[/bold] {analysis.concept}")
    console.print(f"[bold]Themes:[/bold] {', '.join(analysis.themes)}")
    console.print(f"[bold]Mood:[/bold] {analysis.mood}")


@app.command()
def script(
    project_id: str = typer.Argument(..., help="Project UUID"),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Revision notes for the writer"),
):
    """Generate the narration script."""
    project_uuid = _parse_uuid(project_id)
    result = _run(lambda orch: orch.generate_script(project_uuid, notes), "Writing script...")

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("#", justify="right")
    table.add_column("Time")
    table.add_column("Narration")
    for scene in result.scenes:
        table.add_row(str(scene.order), f"{scene.start_time:.1f}-{scene.end_time:.1f}s", scene.narration)
    console.print(table)
    console.print(
        f"[green]✓[/green] Script ready for review: {result.word_count} words, "
        f"~{result.estimated_duration:.0f}s"
    )


@app.command()
def storyboard(
    project_id: str = typer.Argument(..., help="Project UUID"),
):
    """Generate the storyboard from the approved script."""
    project_uuid = _parse_uuid(project_id)
    board = _run(lambda orch: orch.generate_storyboard(project_uuid), "Drawing storyboard...")

    table = Table(show_header=True, header_style="bold blue", title=board.title)
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Camera")
    table.add_column("Duration", justify="right")
    for scene in board.scenes:
        table.add_row(str(scene.order), scene.title, scene.camera_angle, f"{scene.duration:.1f}s")
    console.print(table)
    console.print("[green]✓[/green] Storyboard ready for review")


@app.command()
def assets(
    project_id: str = typer.Argument(..., help="Project UUID"),
):
    """Generate one visual asset per storyboard scene."""
    project_uuid = _parse_uuid(project_id)
    result = _run(lambda orch: orch.generate_assets(project_uuid), "Generating assets...")

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Scene", justify="right")
    table.add_column("URL")
    table.add_column("Reused")
    table.add_column("Cost", justify="right")
    for asset in result.assets:
        table.add_row(
            str(asset.scene_order),
            asset.url,
            "yes" if asset.reused else "",
            f"${asset.cost:.3f}",
        )
    console.print(table)
    console.print(f"[green]✓[/green] Assets ready for review (pass cost ${result.cost:.3f})")


@app.command(name="regenerate-asset")
def regenerate_asset(
    project_id: str = typer.Argument(..., help="Project UUID"),
    scene_order: int = typer.Argument(..., help="Storyboard scene number"),
):
    """Regenerate a single scene asset, bypassing the cache."""
    project_uuid = _parse_uuid(project_id)
    asset = _run(
        lambda orch: orch.regenerate_asset(project_uuid, scene_order),
        f"Regenerating scene {scene_order}...",
    )
    console.print(f"[green]✓[/green] Scene {asset.scene_order}: {asset.url} (${asset.cost:.3f})")


@app.command()
def render(
    project_id: str = typer.Argument(..., help="Project UUID"),
):
    """Narrate and assemble the final video."""
    try:
        validate_dependencies()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    project_uuid = _parse_uuid(project_id)
    video = _run(lambda orch: orch.render_video(project_uuid), "Rendering video...")
    console.print(f"[green]✓[/green] Video generation complete!")
    console.print(f"[green]Output:[/green] {video.url}")
    if video.subtitles_url:
        console.print(f"[green]Subtitles:[/green] {video.subtitles_url}")


# ---------------------------------------------------------------------------
# Review gate
# ---------------------------------------------------------------------------


async def _decide_and_wait(orch: StageOrchestrator, project_uuid: uuid.UUID, decide: Awaitable[Decision]) -> Decision:
    decision = await decide
    if decision.followup:
        console.print(f"[yellow]Running follow-up:[/yellow] {decision.followup}")
        await orch.wait_idle(project_uuid)
        detail = await orch.get_project(project_uuid)
        decision.status = detail.project.status
    return decision


@app.command(name="approve-script")
def approve_script(
    project_id: str = typer.Argument(..., help="Project UUID"),
    reject: bool = typer.Option(False, "--reject", help="Reject and regenerate the script"),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Revision notes (required with --reject)"),
):
    """Approve the script, or reject it with revision notes."""
    project_uuid = _parse_uuid(project_id)
    decision = _run(
        lambda orch: _decide_and_wait(orch, project_uuid, orch.decide_script(project_uuid, not reject, notes)),
        "Applying decision...",
    )
    _print_decision(decision)


@app.command(name="approve-storyboard")
def approve_storyboard(
    project_id: str = typer.Argument(..., help="Project UUID"),
):
    """Approve the storyboard and generate assets."""
    project_uuid = _parse_uuid(project_id)
    decision = _run(
        lambda orch: _decide_and_wait(orch, project_uuid, orch.decide_storyboard(project_uuid, True)),
        "Applying decision...",
    )
    _print_decision(decision)


@app.command(name="approve-assets")
def approve_assets(
    project_id: str = typer.Argument(..., help="Project UUID"),
):
    """Approve the assets and render the final video."""
    project_uuid = _parse_uuid(project_id)
    decision = _run(
        lambda orch: _decide_and_wait(orch, project_uuid, orch.decide_assets(project_uuid, True)),
        "Applying decision...",
    )
    _print_decision(decision)


@app.command()
def back(
    project_id: str = typer.Argument(..., help="Project UUID"),
    target: str = typer.Argument(..., help="script_review, storyboard_review or assets_review"),
):
    """Navigate back to an earlier review state."""
    project_uuid = _parse_uuid(project_id)
    project = _run(lambda orch: orch.navigate_back(project_uuid, target))
    console.print(f"[green]✓[/green] Status: {_status_display(project.status)}")


@app.command()
def recover():
    """Mark projects left mid-call by a stopped process as failed (retryable).

    Do not run while the API server is processing stages for the same database.
    """
    count = _run(lambda orch: orch.recover_interrupted())
    if count:
        console.print(f"[green]✓[/green] Recovered {count} project(s); retry the failed stage")
    else:
        console.print("[dim]No interrupted projects.[/dim]")


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port"),
):
    """Run the REST API server."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(
        "storyflow.api.app:app",
        host=host or settings.server.host,
        port=port or settings.server.port,
        reload=False,
    )
