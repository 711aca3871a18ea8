"""Command-line interface for hacktion."""

import asyncio
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from hacktion.collector import collect_teams
from hacktion.config import get_settings
from hacktion.logging_config import setup_logging
from hacktion.models import InvalidReference, RepositoryIdentifier, TeamStatistics
from hacktion.storage import ConfigStore, RepositoryConflict, TeamStore

console = Console()


def _leaderboard(teams: list[TeamStatistics], title: str) -> Table:
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Team", style="cyan")
    table.add_column("Today", justify="right", style="green")
    table.add_column("Commits", justify="right")
    table.add_column("Issues done", justify="right")
    table.add_column("PRs merged", justify="right")
    table.add_column("+/-", justify="right")
    table.add_column("Last commit")

    for rank, team in enumerate(teams, start=1):
        table.add_row(
            str(rank),
            team.full_name,
            str(team.commits_today),
            str(team.total_commits),
            f"{team.issues_completion_rate:.0f}%",
            str(team.pull_requests_merged),
            f"+{team.code_additions}/-{team.code_deletions}",
            team.last_commit_time.strftime("%Y-%m-%d %H:%M") if team.last_commit_time else "-",
        )
    return table


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Hackathon progress tracker for GitHub team repositories."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging("DEBUG" if verbose else get_settings().log_level)


@main.command()
@click.option("--repo", "-r", multiple=True, help="Specific repository URL(s) to collect")
@click.option("--hackathon", "-H", help="Collect the repositories of one hackathon")
@click.option("--force", is_flag=True, help="Refresh even if stored stats are fresh")
@click.option("--dry-run", is_flag=True, help="Show what would be collected")
@click.pass_context
def collect(
    ctx: click.Context,
    repo: tuple[str, ...],
    hackathon: str | None,
    force: bool,
    dry_run: bool,
) -> None:
    """Collect team statistics from GitHub.

    Examples:
        hacktion collect                                  # Cached or fresh
        hacktion collect --force                          # Always refetch
        hacktion collect -r https://github.com/org/repo   # Single repo
    """
    settings = get_settings()
    urls = list(repo) or None

    teams = asyncio.run(
        collect_teams(settings, urls=urls, hackathon_id=hackathon, force=force, dry_run=dry_run)
    )
    if teams:
        console.print(_leaderboard(teams, "Leaderboard"))


@main.command()
@click.option("--hackathon", "-H", help="Only teams of this hackathon")
@click.option("--limit", "-n", default=0, help="Show only the top N teams")
@click.pass_context
def show(ctx: click.Context, hackathon: str | None, limit: int) -> None:
    """Display stored team statistics without contacting GitHub.

    Examples:
        hacktion show                     # All teams
        hacktion show -n 5                # Top 5
    """
    settings = get_settings()
    teams = TeamStore(settings.data_dir).load_all(hackathon_id=hackathon)

    if not teams:
        console.print("[yellow]No data found. Run 'hacktion collect' first.[/yellow]")
        return

    if limit > 0:
        teams = teams[:limit]
    console.print(_leaderboard(teams, "Leaderboard (stored)"))


@main.command()
@click.argument("url")
@click.option("--team", "-t", help="Team name for the repository")
@click.option("--hackathon", "-H", help="Hackathon the repository belongs to")
@click.pass_context
def add(ctx: click.Context, url: str, team: str | None, hackathon: str | None) -> None:
    """Register a repository for tracking."""
    try:
        RepositoryIdentifier.parse(url)
    except InvalidReference as e:
        raise click.BadParameter(str(e), param_hint="URL") from e

    settings = get_settings()
    try:
        config = ConfigStore(settings.data_dir).add_repository(
            url, team_name=team, hackathon_id=hackathon
        )
    except RepositoryConflict as e:
        raise click.ClickException(str(e)) from e
    console.print(f"[green]Tracking {config.url} (id {config.id})[/green]")


@main.command()
@click.argument("repository_id", type=int)
@click.pass_context
def remove(ctx: click.Context, repository_id: int) -> None:
    """Stop tracking a repository and drop its stored statistics."""
    settings = get_settings()
    config = ConfigStore(settings.data_dir).delete_repository(repository_id)

    if config is None:
        console.print(f"[red]No repository with id {repository_id}[/red]")
        return

    TeamStore(settings.data_dir).delete_for_url(config.url)
    console.print(f"[green]Removed {config.url}[/green]")


@main.command()
@click.argument("repository_id", type=int)
@click.option("--off", is_flag=True, help="Pause polling instead of resuming it")
@click.pass_context
def activate(ctx: click.Context, repository_id: int, off: bool) -> None:
    """Resume (or with --off, pause) polling of a repository."""
    settings = get_settings()
    if not ConfigStore(settings.data_dir).set_active(repository_id, not off):
        console.print(f"[red]No repository with id {repository_id}[/red]")
        return
    console.print(f"[green]Repository {repository_id} {'paused' if off else 'active'}[/green]")


@main.command("import")
@click.option("--hackathon", "-H", help="Hackathon to assign the repositories to")
@click.pass_context
def import_repos(ctx: click.Context, hackathon: str | None) -> None:
    """Register the repositories listed in config/repos.yaml."""
    settings = get_settings()
    entries = settings.load_repos_file()

    if not entries:
        console.print(f"[yellow]No repositories in {settings.config_dir / 'repos.yaml'}[/yellow]")
        return

    store = ConfigStore(settings.data_dir)
    imported = 0
    for entry in entries:
        try:
            store.add_repository(entry.url, team_name=entry.team_name, hackathon_id=hackathon)
        except RepositoryConflict as e:
            console.print(f"[yellow]Skipped: {e}[/yellow]")
            continue
        imported += 1
    console.print(f"[green]Imported {imported} repositories[/green]")


@main.command("list")
@click.pass_context
def list_repos(ctx: click.Context) -> None:
    """List configured repositories."""
    settings = get_settings()
    repos = ConfigStore(settings.data_dir).list_repositories(include_inactive=True)

    if not repos:
        console.print("[yellow]No repositories configured. Use 'hacktion add <url>'.[/yellow]")
        return

    table = Table(title="Configured Repositories")
    table.add_column("ID", justify="right")
    table.add_column("Repository", style="cyan")
    table.add_column("Team", style="green")
    table.add_column("Hackathon")
    table.add_column("Active")

    for repo in repos:
        table.add_row(
            str(repo.id),
            repo.url,
            repo.team_name or "",
            repo.hackathon_id or "",
            "yes" if repo.active else "no",
        )

    console.print(table)


@main.command()
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["csv", "json"]),
    default="csv",
)
@click.option("--output", "-o", type=click.Path(), help="Output file path")
@click.pass_context
def export(ctx: click.Context, output_format: str, output: str | None) -> None:
    """Export stored team statistics.

    Examples:
        hacktion export                           # reports/teams.csv
        hacktion export -f json -o teams.json     # JSON export
    """
    settings = get_settings()
    df = TeamStore(settings.data_dir).teams.read()

    if df.is_empty():
        console.print("[yellow]No data found. Run 'hacktion collect' first.[/yellow]")
        return

    output_path = Path(output or f"reports/teams.{output_format}")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df = df.sort(["commits_today", "total_commits"], descending=[True, True])

    if output_format == "csv":
        df.write_csv(output_path)
    else:
        df.write_json(output_path)
    console.print(f"[green]Exported to {output_path}[/green]")


@main.command()
@click.option("--host", help="Bind address (default: settings)")
@click.option("--port", type=int, help="Port (default: settings)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the HTTP API for the dashboard."""
    import uvicorn

    from hacktion.api import create_app

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
