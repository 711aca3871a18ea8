"""Per-repository statistics aggregation."""

import asyncio
import logging
from collections.abc import Sequence
from datetime import date, datetime, timedelta

from hacktion.github_client import Deadline, GitHubAPIError, GitHubClient
from hacktion.models import (
    CommitRecord,
    ContributorStatistic,
    DailyActivity,
    IssueRecord,
    PullRequestRecord,
    RepoMetadata,
    RepositoryIdentifier,
    TeamStatistics,
)

logger = logging.getLogger(__name__)

COMMIT_LIMIT = 100
COMMIT_DETAIL_LIMIT = 20
ACTIVITY_WINDOW_DAYS = 7

# Raised while reading GitHub payloads that lack expected fields or types.
MALFORMED_PAYLOAD_ERRORS = (AttributeError, KeyError, TypeError, ValueError)


class UpstreamFetchError(Exception):
    """Raised when GitHub data for a repository could not be fetched."""

    def __init__(self, reference: RepositoryIdentifier, message: str):
        super().__init__(f"{reference}: {message}")
        self.reference = reference


def _first_error(error: BaseException) -> BaseException:
    while isinstance(error, BaseExceptionGroup):
        error = error.exceptions[0]
    return error


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _local_day(moment: datetime, now: datetime) -> date:
    return moment.astimezone(now.tzinfo).date()


def count_commits_today(commits: Sequence[CommitRecord], now: datetime) -> int:
    """Count commits authored on or after local midnight of ``now``."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return sum(1 for c in commits if c.authored_at and c.authored_at >= midnight)


def rollup_contributors(commits: Sequence[CommitRecord]) -> list[ContributorStatistic]:
    """Group commits by author and sum their activity.

    Authors are keyed by login, falling back to the git author name and then
    "Unknown". The avatar is taken from the first commit seen for the author.

    Returns:
        Contributors ordered by commit count (desc), then login.
    """
    totals: dict[str, ContributorStatistic] = {}
    for commit in commits:
        key = commit.contributor
        entry = totals.get(key)
        if entry is None:
            entry = totals[key] = ContributorStatistic(
                login=key, avatar_url=commit.author_avatar_url or ""
            )
        entry.commits += 1
        entry.additions += commit.additions
        entry.deletions += commit.deletions

    return sorted(totals.values(), key=lambda c: (-c.commits, c.login))


def rollup_daily(
    commits: Sequence[CommitRecord], now: datetime, days: int = ACTIVITY_WINDOW_DAYS
) -> list[DailyActivity]:
    """Build one activity entry per local calendar day of the trailing window.

    Days without commits are included with zero counts. Commits without an
    author date or outside the window are ignored.

    Returns:
        ``days`` entries, oldest first, the last one being today.
    """
    today = now.date()
    window = {
        today - timedelta(days=offset): DailyActivity(date=today - timedelta(days=offset))
        for offset in range(days - 1, -1, -1)
    }

    for commit in commits:
        if not commit.authored_at:
            continue
        entry = window.get(_local_day(commit.authored_at, now))
        if entry is None:
            continue
        entry.commits += 1
        entry.additions += commit.additions
        entry.deletions += commit.deletions

    return list(window.values())


def completion_rate(closed: int, total: int) -> float:
    """Percentage of closed issues; 0 when there are none."""
    if total <= 0:
        return 0.0
    return closed / total * 100


def build_team_statistics(
    repository: RepoMetadata,
    commits: Sequence[CommitRecord],
    issues: Sequence[IssueRecord],
    pull_requests: Sequence[PullRequestRecord],
    now: datetime | None = None,
) -> TeamStatistics:
    """Derive team statistics from fetched GitHub data.

    Args:
        repository: Repository metadata.
        commits: Commits, newest first.
        issues: Open and closed issues (pull requests already excluded).
        pull_requests: Open and closed pull requests.
        now: Reference time; its timezone defines local day boundaries.

    Returns:
        TeamStatistics without ``updated_at``.
    """
    now = now or _local_now()

    issues_open = sum(1 for i in issues if i.state == "open")
    issues_closed = sum(1 for i in issues if i.state == "closed")

    return TeamStatistics(
        id=repository.id,
        name=repository.name,
        full_name=repository.full_name,
        owner=repository.owner_login,
        avatar_url=repository.owner_avatar_url,
        description=repository.description or None,
        html_url=repository.html_url,
        total_commits=len(commits),
        commits_today=count_commits_today(commits, now),
        issues_open=issues_open,
        issues_closed=issues_closed,
        issues_completion_rate=completion_rate(issues_closed, len(issues)),
        pull_requests_merged=sum(1 for pr in pull_requests if pr.merged_at),
        last_commit_time=commits[0].authored_at if commits else None,
        code_additions=sum(c.additions for c in commits),
        code_deletions=sum(c.deletions for c in commits),
        contributors=rollup_contributors(commits),
        commits_over_time=rollup_daily(commits, now),
    )


class StatsAggregator:
    """Turns a repository reference into TeamStatistics using GitHub data.

    Attributes:
        client: Initialized GitHub client.
        deadline_seconds: Time budget for all requests of one aggregation.
    """

    def __init__(self, client: GitHubClient, deadline_seconds: float = 60.0):
        self.client = client
        self.deadline_seconds = deadline_seconds

    async def _fetch_issues(
        self, ref: RepositoryIdentifier, deadline: Deadline
    ) -> list[IssueRecord]:
        async with asyncio.TaskGroup() as tg:
            open_issues = tg.create_task(
                self.client.list_issues(ref.owner, ref.name, "open", deadline=deadline)
            )
            closed_issues = tg.create_task(
                self.client.list_issues(ref.owner, ref.name, "closed", deadline=deadline)
            )
        return open_issues.result() + closed_issues.result()

    async def _fetch_pull_requests(
        self, ref: RepositoryIdentifier, deadline: Deadline
    ) -> list[PullRequestRecord]:
        async with asyncio.TaskGroup() as tg:
            open_prs = tg.create_task(
                self.client.list_pull_requests(ref.owner, ref.name, "open", deadline=deadline)
            )
            closed_prs = tg.create_task(
                self.client.list_pull_requests(ref.owner, ref.name, "closed", deadline=deadline)
            )
        return open_prs.result() + closed_prs.result()

    async def aggregate(
        self, reference: RepositoryIdentifier | str, now: datetime | None = None
    ) -> TeamStatistics:
        """Fetch and aggregate statistics for one repository.

        The four fetches run in one task group; the first failure cancels
        the requests still in flight.

        Args:
            reference: Repository identifier or GitHub URL.
            now: Reference time for day boundaries (default: local now).

        Returns:
            Freshly derived TeamStatistics.

        Raises:
            InvalidReference: If ``reference`` is a URL that cannot be parsed.
            UpstreamFetchError: If any GitHub request fails or returns data
                of an unexpected shape.
        """
        ref = (
            RepositoryIdentifier.parse(reference) if isinstance(reference, str) else reference
        )
        deadline = Deadline(self.deadline_seconds)

        try:
            async with asyncio.TaskGroup() as tg:
                repository = tg.create_task(
                    self.client.get_repository(ref.owner, ref.name, deadline=deadline)
                )
                commits = tg.create_task(
                    self.client.list_commits_with_stats(
                        ref.owner,
                        ref.name,
                        deadline=deadline,
                        per_page=COMMIT_LIMIT,
                        detail_limit=COMMIT_DETAIL_LIMIT,
                    )
                )
                issues = tg.create_task(self._fetch_issues(ref, deadline))
                pull_requests = tg.create_task(self._fetch_pull_requests(ref, deadline))
        except ExceptionGroup as group:
            error = _first_error(group)
            if isinstance(error, GitHubAPIError):
                raise UpstreamFetchError(ref, str(error)) from error
            if isinstance(error, MALFORMED_PAYLOAD_ERRORS):
                raise UpstreamFetchError(ref, f"Malformed response: {error!r}") from error
            raise

        try:
            stats = build_team_statistics(
                repository.result(),
                commits.result(),
                issues.result(),
                pull_requests.result(),
                now=now,
            )
        except MALFORMED_PAYLOAD_ERRORS as e:
            raise UpstreamFetchError(ref, f"Malformed response: {e!r}") from e

        logger.info(
            "Aggregated %s: %d commits, %d today", ref, stats.total_commits, stats.commits_today
        )
        return stats
