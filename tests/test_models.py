"""Tests for data models."""

from datetime import date

import pytest
from pydantic import ValidationError

from conftest import make_stats
from hacktion.models import (
    ContributorStatistic,
    DailyActivity,
    InvalidReference,
    RepositoryIdentifier,
    leaderboard_order,
)


class TestRepositoryIdentifier:
    """Tests for repository URL parsing."""

    @pytest.mark.parametrize(
        ("url", "owner", "name"),
        [
            ("https://github.com/owner/repo", "owner", "repo"),
            ("http://github.com/vercel/next.js", "vercel", "next.js"),
            ("github.com/alice/repo1", "alice", "repo1"),
            ("https://github.com/bob/repo2/tree/main/src", "bob", "repo2"),
        ],
    )
    def test_parse_valid(self, url: str, owner: str, name: str) -> None:
        """Test owner and name are the first two segments after the host."""
        ref = RepositoryIdentifier.parse(url)

        assert ref.owner == owner
        assert ref.name == name
        assert ref.full_name == f"{owner}/{name}"

    @pytest.mark.parametrize(
        "url",
        ["invalid-url", "", "https://gitlab.com/owner/repo", "https://github.com/owner", "GitHub.com/a/b"],
    )
    def test_parse_invalid(self, url: str) -> None:
        """Test non-matching strings raise InvalidReference."""
        with pytest.raises(InvalidReference, match="Invalid GitHub URL"):
            RepositoryIdentifier.parse(url)

    def test_invalid_reference_is_value_error(self) -> None:
        """Test InvalidReference can be caught as ValueError."""
        with pytest.raises(ValueError):
            RepositoryIdentifier.parse("nope")

    def test_url_round_trip(self) -> None:
        """Test canonical URL and string form."""
        ref = RepositoryIdentifier("alice", "repo1")

        assert ref.url == "https://github.com/alice/repo1"
        assert str(ref) == "alice/repo1"


class TestTeamStatistics:
    """Tests for TeamStatistics invariants."""

    def test_completion_rate_bounds(self) -> None:
        """Test completion rate outside [0, 100] is rejected."""
        stats = make_stats(1, "alice/repo1")

        with pytest.raises(ValidationError):
            stats.model_validate({**stats.model_dump(), "issues_completion_rate": 101.0})
        with pytest.raises(ValidationError):
            stats.model_validate({**stats.model_dump(), "issues_completion_rate": -1.0})

    def test_commits_today_within_total(self) -> None:
        """Test commits_today may not exceed total_commits."""
        stats = make_stats(1, "alice/repo1")

        with pytest.raises(ValidationError, match="commits_today"):
            stats.model_validate({**stats.model_dump(), "commits_today": 11})

    def test_daily_activity_must_ascend(self) -> None:
        """Test duplicated or descending days are rejected."""
        stats = make_stats(1, "alice/repo1")
        days = [DailyActivity(date=date(2024, 1, 2)), DailyActivity(date=date(2024, 1, 1))]

        with pytest.raises(ValidationError, match="ascending"):
            stats.model_validate({**stats.model_dump(), "commits_over_time": days})

    def test_contributor_logins_unique(self) -> None:
        """Test duplicate contributor logins are rejected."""
        stats = make_stats(1, "alice/repo1")
        contributors = [ContributorStatistic(login="alice"), ContributorStatistic(login="alice")]

        with pytest.raises(ValidationError, match="unique"):
            stats.model_validate({**stats.model_dump(), "contributors": contributors})


class TestLeaderboardOrder:
    """Tests for leaderboard sorting."""

    def test_orders_by_today_then_total(self, sample_stats) -> None:
        """Test commits today desc, ties broken by total commits desc."""
        ordered = leaderboard_order(sample_stats)

        assert [s.full_name for s in ordered] == ["bob/repo2", "carol/repo3", "alice/repo1"]
