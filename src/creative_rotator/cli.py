"""Command-line interface using Typer."""

from typing import TYPE_CHECKING, NoReturn, Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from creative_rotator import __version__
from creative_rotator.domain.errors import RotationError
from creative_rotator.domain.models import SessionSnapshot
from creative_rotator.logging import setup_logging
from creative_rotator.utils import run_async

if TYPE_CHECKING:
    from creative_rotator.services.rotation import RotationService

# Setup logging
setup_logging()

app = typer.Typer(
    name="creative-rotator",
    help="Creative Rotator - impression-based image rotation for marketplace ads",
    add_completion=False,
)

# Subcommand groups
accounts_app = typer.Typer(help="Marketplace account commands")
sessions_app = typer.Typer(help="Rotation session commands")
app.add_typer(accounts_app, name="accounts")
app.add_typer(sessions_app, name="sessions")

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Creative Rotator v{__version__}")
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
    """Creative Rotator - show each creative for a fixed number of impressions."""
    pass


def _parse_uuid(value: str, what: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        console.print(f"[bold red]Invalid {what}: {value}[/bold red]")
        raise typer.Exit(code=1)


def _fail(error: Exception) -> NoReturn:
    console.print(f"[bold red]Error: {error}[/bold red]")
    raise typer.Exit(code=1)


def _service() -> "RotationService":
    from creative_rotator.services.rotation import RotationService

    return RotationService()


def _show_session(snapshot: SessionSnapshot) -> None:
    lines = [
        f"[bold]Session:[/bold] {snapshot.id}",
        f"[bold]Status:[/bold] {snapshot.status.value}",
        f"[bold]Campaign:[/bold] {snapshot.campaign_id}",
        f"[bold]Listing:[/bold] {snapshot.listing_id}",
        f"[bold]Step:[/bold] {snapshot.current_step + 1}/{len(snapshot.creatives)}",
        f"[bold]Live creative:[/bold] {snapshot.current_creative}",
        f"[bold]Impressions:[/bold] {snapshot.cumulative_views} "
        f"(step started at {snapshot.views_at_step_start}, {snapshot.views_per_step} per step)",
        f"[bold]Auto top-up:[/bold] {'on' if snapshot.auto_top_up else 'off'}",
    ]
    if snapshot.next_check_at:
        lines.append(f"[bold]Next check:[/bold] {snapshot.next_check_at.isoformat()}")
    if snapshot.last_error:
        lines.append(f"[bold red]Last error:[/bold red] {snapshot.last_error}")
    console.print(Panel("\n".join(lines), title="Rotation Session"))


@app.command()
def worker() -> None:
    """Start a Celery worker (for development)."""
    console.print("[bold blue]Starting Celery worker...[/bold blue]")

    import subprocess
    import sys

    subprocess.run(
        [
            sys.executable,
            "-m",
            "celery",
            "-A",
            "creative_rotator.worker",
            "worker",
            "-Q",
            "celery,rotation,stats",
            "--loglevel=info",
        ],
        check=True,
    )


@app.command()
def beat() -> None:
    """Start the Celery beat scheduler (for development)."""
    console.print("[bold blue]Starting Celery beat...[/bold blue]")

    import subprocess
    import sys

    subprocess.run(
        [sys.executable, "-m", "celery", "-A", "creative_rotator.worker", "beat", "-l", "info"],
        check=True,
    )


@app.command()
def sweep(
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Max sessions to check"),
    budget: bool = typer.Option(False, "--budget", help="Also run the budget top-up sweep"),
) -> None:
    """Run one rotation sweep in the foreground."""
    from creative_rotator.services.scheduler import RotationScheduler

    scheduler = RotationScheduler()
    result = run_async(scheduler.run_rotation_sweep(limit=limit))

    table = Table(title="Rotation Sweep")
    table.add_column("Outcome", style="cyan")
    table.add_column("Sessions", justify="right")
    for name, count in result.to_dict().items():
        table.add_row(name, str(count))
    console.print(table)

    if budget:
        budget_result = run_async(scheduler.run_budget_sweep())
        console.print(
            f"[green]Budget sweep: {budget_result['topped_up']} topped up "
            f"of {budget_result['checked']} checked[/green]"
        )


@app.command("collect-stats")
def collect_stats() -> None:
    """Collect yesterday's and today's campaign stats in the foreground."""
    from creative_rotator.services.scheduler import RotationScheduler

    result = run_async(RotationScheduler().run_stats_sweep())
    console.print(
        f"[green]Collected {result['rows']} rows for {result['collected']}/"
        f"{result['campaigns']} campaigns[/green]"
    )
    if result["errors"]:
        console.print(f"[yellow]{result['errors']} campaigns failed, see logs[/yellow]")


# =============================================================================
# ACCOUNT COMMANDS
# =============================================================================


@accounts_app.command("add")
def accounts_add(
    label: str = typer.Argument(..., help="Unique account label"),
    token: str = typer.Option(
        ..., "--token", "-t", prompt=True, hide_input=True, help="Marketplace API token"
    ),
) -> None:
    """Store a marketplace account with an encrypted API token."""
    from creative_rotator.db.session import get_session_context
    from creative_rotator.services.accounts import create_account

    try:
        with get_session_context() as session:
            account = create_account(session, label, token)
            account_id = account.id
    except RotationError as e:
        _fail(e)

    console.print(f"[green]✓ Account added: {label}[/green]")
    console.print(f"[dim]ID: {account_id}[/dim]")


@accounts_app.command("list")
def accounts_list(
    active_only: bool = typer.Option(False, "--active", help="Only active accounts"),
) -> None:
    """List stored accounts."""
    from creative_rotator.db.session import get_session_context
    from creative_rotator.services.accounts import list_accounts

    with get_session_context() as session:
        accounts = list_accounts(session, active_only=active_only)

        if not accounts:
            console.print("[yellow]No accounts found[/yellow]")
            return

        table = Table(title="Accounts")
        table.add_column("ID", style="dim")
        table.add_column("Label", style="cyan")
        table.add_column("Active")
        table.add_column("Created")
        for account in accounts:
            table.add_row(
                str(account.id),
                account.label,
                "✓" if account.is_active else "✗",
                account.created_at.strftime("%Y-%m-%d") if account.created_at else "-",
            )
        console.print(table)


# =============================================================================
# SESSION COMMANDS
# =============================================================================


@sessions_app.command("start")
def sessions_start(
    account_id: str = typer.Argument(..., help="Account UUID"),
    campaign_id: int = typer.Argument(..., help="Advertising campaign id"),
    listing_id: int = typer.Argument(..., help="Product card id whose main image rotates"),
    creatives: list[str] = typer.Argument(..., help="Image URLs in display order (2-5)"),
    views_per_step: Optional[int] = typer.Option(
        None, "--views-per-step", "-n", help="Impressions per creative"
    ),
    auto_top_up: bool = typer.Option(False, "--auto-top-up", help="Keep the budget funded"),
    threshold: Optional[int] = typer.Option(None, "--threshold", help="Top-up threshold"),
    amount: Optional[int] = typer.Option(None, "--amount", help="Top-up amount"),
    draft: bool = typer.Option(False, "--draft", help="Create without starting"),
) -> None:
    """Start rotating creatives on a campaign."""
    try:
        snapshot = run_async(
            _service().start_session(
                _parse_uuid(account_id, "account ID"),
                campaign_id,
                listing_id,
                creatives,
                views_per_step=views_per_step,
                auto_top_up=auto_top_up,
                top_up_threshold=threshold,
                top_up_amount=amount,
                start=not draft,
            )
        )
    except RotationError as e:
        _fail(e)

    console.print(f"[green]✓ Session created: {snapshot.id}[/green]")
    _show_session(snapshot)


@sessions_app.command("pause")
def sessions_pause(session_id: str = typer.Argument(..., help="Session UUID")) -> None:
    """Pause a running session."""
    try:
        snapshot = _service().pause_session(_parse_uuid(session_id, "session ID"))
    except RotationError as e:
        _fail(e)
    console.print(f"[yellow]Session paused at step {snapshot.current_step + 1}[/yellow]")


@sessions_app.command("resume")
def sessions_resume(session_id: str = typer.Argument(..., help="Session UUID")) -> None:
    """Resume a paused session or start a draft."""
    try:
        snapshot = run_async(_service().resume_session(_parse_uuid(session_id, "session ID")))
    except RotationError as e:
        _fail(e)
    console.print(f"[green]✓ Session running at step {snapshot.current_step + 1}[/green]")


@sessions_app.command("stop")
def sessions_stop(session_id: str = typer.Argument(..., help="Session UUID")) -> None:
    """Stop a session for good."""
    try:
        _service().stop_session(_parse_uuid(session_id, "session ID"))
    except RotationError as e:
        _fail(e)
    console.print("[green]✓ Session stopped[/green]")


@sessions_app.command("status")
def sessions_status(session_id: str = typer.Argument(..., help="Session UUID")) -> None:
    """Show the state of a session."""
    try:
        snapshot = _service().get_status(_parse_uuid(session_id, "session ID"))
    except RotationError as e:
        _fail(e)
    _show_session(snapshot)


@sessions_app.command("check")
def sessions_check(session_id: str = typer.Argument(..., help="Session UUID")) -> None:
    """Check a session now and rotate if a threshold was crossed."""
    try:
        result = run_async(_service().force_check(_parse_uuid(session_id, "session ID")))
    except RotationError as e:
        _fail(e)

    if result.error:
        console.print(f"[bold red]✗ Check failed: {result.error}[/bold red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Outcome: {result.outcome.value}[/green]")
    if result.views is not None:
        console.print(f"[dim]Impressions: {result.views}[/dim]")
    if result.to_step is not None and result.from_step != result.to_step:
        console.print(f"[dim]Step {result.from_step} → {result.to_step}[/dim]")


@sessions_app.command("results")
def sessions_results(session_id: str = typer.Argument(..., help="Session UUID")) -> None:
    """Show per-creative performance and the winner."""
    try:
        results = _service().get_results(_parse_uuid(session_id, "session ID"))
    except RotationError as e:
        _fail(e)

    table = Table(title=f"Results ({results.status.value})")
    table.add_column("Step", justify="right")
    table.add_column("Creative", style="cyan")
    table.add_column("Impressions", justify="right")
    table.add_column("Hours", justify="right")
    table.add_column("Per hour", justify="right")
    winner_index = results.winner.step_index if results.winner else None
    for step in results.steps:
        marker = " ★" if step.step_index == winner_index else ""
        table.add_row(
            f"{step.step_index + 1}{marker}",
            step.creative_ref[:60],
            str(step.views_collected),
            f"{step.duration_hours:.1f}",
            f"{step.views_per_hour:.1f}",
        )
    console.print(table)


if __name__ == "__main__":
    app()
