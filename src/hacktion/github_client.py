"""Async GitHub REST API client."""

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import Any, Self

import httpx

from hacktion.models import CommitRecord, IssueRecord, PullRequestRecord, RepoMetadata

logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """Base exception for GitHub API errors."""


class RateLimitError(GitHubAPIError):
    """Raised when rate limit is exceeded."""

    def __init__(self, message: str, reset_at: datetime | None = None):
        """Initialize with reset time.

        Args:
            message: Error message.
            reset_at: When rate limit resets (UTC).
        """
        super().__init__(message)
        self.reset_at = reset_at


class AuthenticationError(GitHubAPIError):
    """Raised for authentication failures."""


class NotFoundError(GitHubAPIError):
    """Raised when repository doesn't exist or no access."""


class DeadlineExceeded(GitHubAPIError):
    """Raised when a request is attempted or still running past its deadline."""


class Deadline:
    """Fixed point in time by which a group of remote calls must finish.

    One deadline is created per unit of work (e.g. aggregating one
    repository) and handed to every request made for it.
    """

    def __init__(self, seconds: float):
        self.seconds = seconds
        self.expires_at = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class GitHubClient:
    """Async client for the GitHub REST API.

    Handles authentication, deadlines and error mapping. Retries are off
    unless ``max_retries`` is raised.

    Attributes:
        BASE_URL: GitHub API base URL.
    """

    BASE_URL = "https://api.github.com"

    def __init__(self, token: str | None = None, timeout: float = 30.0, max_retries: int = 1):
        """Initialize client with an optional authentication token.

        Args:
            token: GitHub personal access token; anonymous access when empty.
            timeout: Upper bound for a single request in seconds.
            max_retries: Attempts per request for transient failures.
        """
        self.token = token
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> Self:
        """Enter async context manager."""
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        self._client = httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers=headers,
            timeout=self.timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        deadline: Deadline,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Execute a request bounded by ``deadline``.

        Args:
            method: HTTP method.
            path: API endpoint path.
            deadline: Deadline shared by all requests of the current unit of work.
            params: Query parameters.

        Returns:
            Decoded JSON response.

        Raises:
            DeadlineExceeded: When the deadline passes before a response arrives.
            RateLimitError: When rate limit is exceeded.
            AuthenticationError: For auth failures.
            NotFoundError: When resource not found.
            GitHubAPIError: For other API errors.
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use async context manager.")

        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            budget = min(self.timeout, deadline.remaining())
            if budget <= 0:
                raise DeadlineExceeded(f"Deadline of {deadline.seconds}s exceeded: {path}")

            try:
                async with asyncio.timeout(budget):
                    response = await self._client.request(method, path, params=params)
            except TimeoutError as e:
                raise DeadlineExceeded(f"Deadline of {deadline.seconds}s exceeded: {path}") from e
            except httpx.RequestError as e:
                last_error = GitHubAPIError(f"Request failed: {e}")
                if attempt + 1 < self.max_retries:
                    await asyncio.sleep(2**attempt)
                continue

            if response.status_code == 200:
                try:
                    return response.json()
                except ValueError as e:
                    raise GitHubAPIError(f"Invalid JSON response from {path}: {e}") from e

            if response.status_code == 401:
                raise AuthenticationError("Invalid or expired token")

            if response.status_code == 403:
                # Check if rate limited
                remaining = response.headers.get("X-RateLimit-Remaining", "1")
                if remaining == "0":
                    reset_timestamp = int(response.headers.get("X-RateLimit-Reset", "0"))
                    reset_at = datetime.fromtimestamp(reset_timestamp, tz=UTC)
                    raise RateLimitError(
                        f"Rate limit exceeded. Resets at {reset_at.isoformat()}",
                        reset_at=reset_at,
                    )
                raise AuthenticationError("Access forbidden - check token permissions")

            if response.status_code == 404:
                raise NotFoundError(f"Repository not found or no access: {path}")

            # Server errors - retryable
            if response.status_code >= 500:
                last_error = GitHubAPIError(
                    f"Server error {response.status_code}: {response.text}"
                )
                if attempt + 1 < self.max_retries:
                    await asyncio.sleep(2**attempt)
                continue

            raise GitHubAPIError(f"API error {response.status_code}: {response.text}")

        raise last_error or GitHubAPIError("Request failed after retries")

    async def get_repository(self, owner: str, repo: str, *, deadline: Deadline) -> RepoMetadata:
        """Fetch repository metadata.

        Args:
            owner: Repository owner/organization.
            repo: Repository name.
            deadline: Request deadline.

        Returns:
            RepoMetadata for the repository.
        """
        data = await self._request("GET", f"/repos/{owner}/{repo}", deadline=deadline)
        owner_data = data.get("owner") or {}
        return RepoMetadata(
            id=data["id"],
            name=data.get("name", repo),
            full_name=data.get("full_name", f"{owner}/{repo}"),
            owner_login=owner_data.get("login", owner),
            owner_avatar_url=owner_data.get("avatar_url", ""),
            description=data.get("description"),
            html_url=data.get("html_url", f"https://github.com/{owner}/{repo}"),
        )

    async def list_commits(
        self, owner: str, repo: str, *, deadline: Deadline, per_page: int = 100
    ) -> list[CommitRecord]:
        """Fetch the most recent commits, newest first.

        Args:
            owner: Repository owner/organization.
            repo: Repository name.
            deadline: Request deadline.
            per_page: Number of commits to fetch (max 100).

        Returns:
            List of CommitRecord without line-change stats.
        """
        data = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/commits",
            deadline=deadline,
            params={"per_page": per_page},
        )
        commits = []
        for item in data:
            author = item.get("author") or {}
            git_author = (item.get("commit") or {}).get("author") or {}
            commits.append(
                CommitRecord(
                    sha=item.get("sha", ""),
                    author_login=author.get("login"),
                    author_avatar_url=author.get("avatar_url"),
                    author_name=git_author.get("name"),
                    authored_at=_parse_timestamp(git_author.get("date")),
                )
            )
        return commits

    async def get_commit_stats(
        self, owner: str, repo: str, sha: str, *, deadline: Deadline
    ) -> tuple[int, int]:
        """Fetch line additions and deletions for one commit.

        Returns:
            Tuple of (additions, deletions).
        """
        data = await self._request("GET", f"/repos/{owner}/{repo}/commits/{sha}", deadline=deadline)
        stats = data.get("stats") or {}
        return stats.get("additions", 0), stats.get("deletions", 0)

    async def list_commits_with_stats(
        self,
        owner: str,
        repo: str,
        *,
        deadline: Deadline,
        per_page: int = 100,
        detail_limit: int = 20,
    ) -> list[CommitRecord]:
        """Fetch recent commits and expand line-change stats for the newest ones.

        Details for the first ``detail_limit`` commits are fetched in
        parallel. A commit whose detail request fails keeps zero stats.

        Args:
            owner: Repository owner/organization.
            repo: Repository name.
            deadline: Request deadline.
            per_page: Number of commits to fetch (max 100).
            detail_limit: Number of commits to fetch stats for.

        Returns:
            List of CommitRecord, newest first.
        """
        commits = await self.list_commits(owner, repo, deadline=deadline, per_page=per_page)
        head = commits[:detail_limit]

        details = await asyncio.gather(
            *(self.get_commit_stats(owner, repo, c.sha, deadline=deadline) for c in head),
            return_exceptions=True,
        )

        for commit, detail in zip(head, details):
            if isinstance(detail, DeadlineExceeded):
                raise detail
            if isinstance(detail, GitHubAPIError):
                logger.debug("No stats for %s/%s@%s: %s", owner, repo, commit.sha, detail)
                continue
            if isinstance(detail, BaseException):
                raise detail
            commit.additions, commit.deletions = detail
            commit.has_stats = True

        return commits

    async def list_issues(
        self, owner: str, repo: str, state: str, *, deadline: Deadline, per_page: int = 100
    ) -> list[IssueRecord]:
        """Fetch issues in the given state, excluding pull requests.

        Args:
            owner: Repository owner/organization.
            repo: Repository name.
            state: "open" or "closed".
            deadline: Request deadline.
            per_page: Number of issues to fetch (max 100).

        Returns:
            List of IssueRecord.
        """
        data = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/issues",
            deadline=deadline,
            params={"state": state, "per_page": per_page},
        )
        return [
            IssueRecord(
                number=item.get("number", 0),
                state=item.get("state", state),
                title=item.get("title") or "",
            )
            for item in data
            if item.get("pull_request") is None
        ]

    async def list_pull_requests(
        self, owner: str, repo: str, state: str, *, deadline: Deadline, per_page: int = 100
    ) -> list[PullRequestRecord]:
        """Fetch pull requests in the given state.

        Args:
            owner: Repository owner/organization.
            repo: Repository name.
            state: "open" or "closed".
            deadline: Request deadline.
            per_page: Number of pull requests to fetch (max 100).

        Returns:
            List of PullRequestRecord.
        """
        data = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls",
            deadline=deadline,
            params={"state": state, "per_page": per_page},
        )
        return [
            PullRequestRecord(
                number=item.get("number", 0),
                state=item.get("state", state),
                merged_at=_parse_timestamp(item.get("merged_at")),
                title=item.get("title") or "",
            )
            for item in data
        ]
