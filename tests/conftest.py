"""Shared test fixtures."""

from datetime import UTC, date, datetime, timedelta
from pathlib import Path

import httpx
import pytest
from httpx import Response

from hacktion.aggregator import UpstreamFetchError
from hacktion.models import (
    ContributorStatistic,
    DailyActivity,
    RepositoryIdentifier,
    TeamStatistics,
)


def make_stats(
    team_id: int,
    full_name: str,
    total_commits: int = 10,
    commits_today: int = 2,
    updated_at: datetime | None = None,
    hackathon_id: str | None = None,
) -> TeamStatistics:
    """Build a small but complete TeamStatistics record."""
    owner, name = full_name.split("/")
    today = date(2024, 1, 10)
    return TeamStatistics(
        id=team_id,
        name=name,
        full_name=full_name,
        owner=owner,
        avatar_url=f"https://github.com/{owner}.png",
        description=f"{name} project",
        html_url=f"https://github.com/{full_name}",
        total_commits=total_commits,
        commits_today=commits_today,
        issues_open=1,
        issues_closed=3,
        issues_completion_rate=75.0,
        pull_requests_merged=2,
        last_commit_time=datetime(2024, 1, 10, 9, 30, tzinfo=UTC),
        code_additions=120,
        code_deletions=30,
        contributors=[
            ContributorStatistic(login=owner, commits=total_commits, additions=120, deletions=30),
        ],
        commits_over_time=[
            DailyActivity(date=today - timedelta(days=1), commits=total_commits - commits_today),
            DailyActivity(date=today, commits=commits_today, additions=120, deletions=30),
        ],
        updated_at=updated_at,
        hackathon_id=hackathon_id,
    )


class FakeAggregator:
    """Aggregator stand-in returning canned results per repository URL.

    Attributes:
        results: URL -> TeamStatistics or exception to raise.
        calls: URLs passed to ``aggregate`` in call order.
    """

    def __init__(self, results: dict[str, TeamStatistics | Exception]):
        self.results = results
        self.calls: list[str] = []

    async def aggregate(self, reference) -> TeamStatistics:
        url = str(reference)
        self.calls.append(url)
        ref = RepositoryIdentifier.parse(url)
        result = self.results.get(url)
        if result is None:
            raise UpstreamFetchError(ref, "no canned result")
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def sample_stats() -> list[TeamStatistics]:
    """Sample team statistics for testing."""
    return [
        make_stats(1, "alice/repo1", total_commits=10, commits_today=2),
        make_stats(2, "bob/repo2", total_commits=40, commits_today=5),
        make_stats(3, "carol/repo3", total_commits=25, commits_today=2),
    ]


@pytest.fixture
def temp_data_dir(tmp_path: Path) -> Path:
    """Temporary directory for test data files."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    return data_dir


def _by_state(open_items: list[dict], closed_items: list[dict]):
    def handler(request: httpx.Request) -> Response:
        state = request.url.params.get("state")
        return Response(200, json=open_items if state == "open" else closed_items)

    return handler


def mock_github_repository(
    respx_mock,
    full_name: str = "alice/repo1",
    repo_id: int = 42,
    repo_status: int = 200,
    commit_detail_status: int = 200,
    repo_response: Response | None = None,
) -> None:
    """Register GitHub routes for one repository with two commits.

    The newest commit (2024-01-10) is by a GitHub user, the older one
    (2024-01-09) only carries a git author name.
    """
    owner, name = full_name.split("/")
    base = f"/repos/{full_name}"
    respx_mock.get(base).mock(
        return_value=repo_response
        if repo_response is not None
        else Response(
            repo_status,
            json={
                "id": repo_id,
                "name": name,
                "full_name": full_name,
                "owner": {"login": owner, "avatar_url": f"https://{owner}.png"},
                "description": f"Team {owner.capitalize()}",
                "html_url": f"https://github.com/{full_name}",
            },
        )
    )
    respx_mock.get(f"{base}/commits").mock(
        return_value=Response(
            200,
            json=[
                {
                    "sha": "aaa",
                    "author": {"login": owner, "avatar_url": f"https://{owner}.png"},
                    "commit": {"author": {"name": owner, "date": "2024-01-10T12:00:00Z"}},
                },
                {
                    "sha": "bbb",
                    "author": None,
                    "commit": {"author": {"name": "Bob", "date": "2024-01-09T12:00:00Z"}},
                },
            ],
        )
    )
    respx_mock.get(f"{base}/commits/aaa").mock(
        return_value=Response(
            commit_detail_status, json={"stats": {"additions": 7, "deletions": 3, "total": 10}}
        )
    )
    respx_mock.get(f"{base}/commits/bbb").mock(
        return_value=Response(200, json={"stats": {"additions": 1, "deletions": 0, "total": 1}})
    )
    respx_mock.get(f"{base}/issues").mock(
        side_effect=_by_state(
            [
                {"number": 1, "state": "open", "title": "Bug"},
                {"number": 9, "state": "open", "title": "PR", "pull_request": {"url": "x"}},
            ],
            [{"number": 2, "state": "closed", "title": "Done"}],
        )
    )
    respx_mock.get(f"{base}/pulls").mock(
        side_effect=_by_state(
            [{"number": 9, "state": "open", "merged_at": None}],
            [
                {"number": 7, "state": "closed", "merged_at": "2024-01-09T08:00:00Z"},
                {"number": 8, "state": "closed", "merged_at": None},
            ],
        )
    )
