"""Data collection orchestration for the command line."""

from datetime import timedelta

from rich.console import Console

from hacktion.aggregator import StatsAggregator
from hacktion.cache import RefreshReport, TeamStatsCache
from hacktion.config import Settings, resolve_repository_urls
from hacktion.github_client import GitHubClient
from hacktion.models import TeamStatistics
from hacktion.storage import ConfigStore, TeamStore

console = Console()


def _open_cache(settings: Settings, client: GitHubClient) -> TeamStatsCache:
    return TeamStatsCache(
        TeamStore(settings.data_dir),
        StatsAggregator(client, deadline_seconds=settings.fetch_deadline),
        ttl=timedelta(seconds=settings.cache_ttl_seconds),
    )


def _print_report(report: RefreshReport) -> None:
    for outcome in report.outcomes:
        if outcome.statistics is not None:
            stats = outcome.statistics
            console.print(
                f"  [green]{stats.full_name}[/green]: {stats.total_commits} commits, "
                f"{stats.commits_today} today"
            )
        else:
            console.print(f"  [red]{outcome.url}: {outcome.error}[/red]")


async def collect_teams(
    settings: Settings,
    urls: list[str] | None = None,
    hackathon_id: str | None = None,
    force: bool = False,
    dry_run: bool = False,
) -> list[TeamStatistics]:
    """Collect team statistics for the configured repositories.

    Args:
        settings: Application settings.
        urls: Specific repository URLs (default: all configured).
        hackathon_id: Hackathon whose repositories are collected.
        force: Refresh even if the stored statistics are still fresh.
        dry_run: If True, show what would be collected without fetching.

    Returns:
        Statistics returned by the cache or the refresh.
    """
    config_store = ConfigStore(settings.data_dir)
    if urls is None:
        urls = resolve_repository_urls(settings, config_store, hackathon_id)
    scopes = config_store.hackathon_by_url()

    if not urls:
        console.print("[yellow]No repositories configured[/yellow]")
        return []

    if dry_run:
        for url in urls:
            console.print(f"  Would collect: {url}")
        return []

    if not settings.github_token:
        console.print("[yellow]GITHUB_TOKEN not set, using anonymous rate limits[/yellow]")

    console.print(f"\n[bold]Collecting stats for {len(urls)} repositories[/bold]\n")

    async with GitHubClient(settings.github_token, timeout=settings.request_timeout) as client:
        cache = _open_cache(settings, client)

        if not force:
            return await cache.get_team_stats(urls, hackathon_id=hackathon_id, scopes=scopes)

        report = await cache.refresh(urls, hackathon_id=hackathon_id, scopes=scopes)

    _print_report(report)
    console.print(
        f"\n[green]Stored {len(report.statistics)} teams to {settings.data_dir}[/green]"
    )
    return report.statistics
