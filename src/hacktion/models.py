"""Data models for hacktion."""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Self

from pydantic import BaseModel, Field, field_validator, model_validator

GITHUB_URL_PATTERN = re.compile(r"github\.com/([^/]+)/([^/]+)")


class InvalidReference(ValueError):
    """Raised when a repository URL does not look like github.com/<owner>/<name>."""


@dataclass(frozen=True)
class RepositoryIdentifier:
    """Reference to a GitHub repository.

    Attributes:
        owner: Repository owner/organization (e.g., "vercel").
        name: Repository name (e.g., "next.js").
    """

    owner: str
    name: str

    @classmethod
    def parse(cls, url: str) -> Self:
        """Extract owner and name from a repository URL.

        Only the first two path segments after the host are used, so
        ``https://github.com/owner/repo/tree/main`` parses to ``owner/repo``.

        Args:
            url: Repository URL such as ``https://github.com/owner/repo``.

        Returns:
            Parsed identifier.

        Raises:
            InvalidReference: If the URL does not match the expected shape.
        """
        match = GITHUB_URL_PATTERN.search(url or "")
        if not match:
            raise InvalidReference(f"Invalid GitHub URL: {url}")
        return cls(owner=match.group(1), name=match.group(2))

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def url(self) -> str:
        return f"https://github.com/{self.full_name}"

    def __str__(self) -> str:
        return self.full_name


@dataclass
class RepoMetadata:
    """Repository metadata from GitHub API.

    Attributes:
        id: Numeric GitHub repository id.
        name: Repository name.
        full_name: "owner/name".
        owner_login: Owner login.
        owner_avatar_url: Owner avatar image URL.
        description: Repository description (may be None).
        html_url: Canonical browser URL.
    """

    id: int
    name: str
    full_name: str
    owner_login: str
    owner_avatar_url: str
    description: str | None
    html_url: str


@dataclass
class CommitRecord:
    """Single commit from the commit listing.

    Line-change stats come from the per-commit detail endpoint and are only
    present for the commits that were expanded (``has_stats``).
    """

    sha: str
    author_login: str | None = None
    author_avatar_url: str | None = None
    author_name: str | None = None
    authored_at: datetime | None = None
    additions: int = 0
    deletions: int = 0
    has_stats: bool = False

    @property
    def contributor(self) -> str:
        return self.author_login or self.author_name or "Unknown"


@dataclass
class IssueRecord:
    number: int
    state: str
    title: str = ""


@dataclass
class PullRequestRecord:
    number: int
    state: str
    merged_at: datetime | None = None
    title: str = ""


class ContributorStatistic(BaseModel):
    """Commit activity of one author within a repository."""

    login: str
    avatar_url: str = ""
    commits: int = Field(default=0, ge=0)
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)


class DailyActivity(BaseModel):
    """Commit activity for one calendar day."""

    date: date
    commits: int = Field(default=0, ge=0)
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)


class TeamStatistics(BaseModel):
    """Aggregated progress statistics for one team repository.

    ``updated_at`` is empty until the cache stamps the record on refresh.
    """

    id: int
    name: str
    full_name: str
    owner: str
    avatar_url: str = ""
    description: str | None = None
    html_url: str
    total_commits: int = Field(default=0, ge=0)
    commits_today: int = Field(default=0, ge=0)
    issues_open: int = Field(default=0, ge=0)
    issues_closed: int = Field(default=0, ge=0)
    issues_completion_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    pull_requests_merged: int = Field(default=0, ge=0)
    last_commit_time: datetime | None = None
    code_additions: int = Field(default=0, ge=0)
    code_deletions: int = Field(default=0, ge=0)
    contributors: list[ContributorStatistic] = Field(default_factory=list)
    commits_over_time: list[DailyActivity] = Field(default_factory=list)
    updated_at: datetime | None = None
    hackathon_id: str | None = None

    @field_validator("contributors")
    @classmethod
    def _unique_logins(cls, value: list[ContributorStatistic]) -> list[ContributorStatistic]:
        logins = [c.login for c in value]
        if len(logins) != len(set(logins)):
            raise ValueError("contributor logins must be unique")
        return value

    @field_validator("commits_over_time")
    @classmethod
    def _ascending_days(cls, value: list[DailyActivity]) -> list[DailyActivity]:
        days = [d.date for d in value]
        if any(a >= b for a, b in zip(days, days[1:])):
            raise ValueError("daily activity must be unique per date and ordered ascending")
        return value

    @model_validator(mode="after")
    def _today_within_total(self) -> Self:
        if self.commits_today > self.total_commits:
            raise ValueError("commits_today cannot exceed total_commits")
        return self


def leaderboard_order(stats: list[TeamStatistics]) -> list[TeamStatistics]:
    """Sort by commits today, then total commits, both descending."""
    return sorted(stats, key=lambda s: (-s.commits_today, -s.total_commits))


class Hackathon(BaseModel):
    """Hackathon grouping a set of team repositories."""

    id: str
    name: str
    description: str = ""
    start_date: date | None = None
    end_date: date | None = None
    created_at: datetime | None = None


class RepositoryConfig(BaseModel):
    """Repository registered for tracking.

    Attributes:
        id: Sequential configuration id.
        url: Repository URL as entered.
        team_name: Display name of the owning team.
        hackathon_id: Hackathon the repository belongs to, if any.
        active: Inactive repositories are kept but not polled.
    """

    id: int
    url: str
    team_name: str | None = None
    hackathon_id: str | None = None
    active: bool = True
    created_at: datetime | None = None
