"""Tests for the freshness-gated team statistics cache."""

from datetime import UTC, datetime, timedelta

import pytest

from conftest import FakeAggregator, make_stats
from hacktion.aggregator import UpstreamFetchError
from hacktion.cache import RefreshOutcome, RefreshReport, TeamStatsCache
from hacktion.models import InvalidReference, RepositoryIdentifier
from hacktion.storage import TeamStore

NOW = datetime(2024, 1, 10, 15, 0, tzinfo=UTC)

URL1 = "https://github.com/alice/repo1"
URL2 = "https://github.com/bob/repo2"
URL3 = "https://github.com/carol/repo3"


@pytest.fixture
def store(temp_data_dir) -> TeamStore:
    return TeamStore(temp_data_dir)


class TestFreshness:
    """Tests for the freshness gate."""

    @pytest.mark.asyncio
    async def test_hit_returns_stored_set(self, store) -> None:
        """Test data refreshed four minutes ago is served without fetching."""
        store.replace(make_stats(1, "alice/repo1", updated_at=NOW - timedelta(minutes=4)))
        store.replace(make_stats(2, "bob/repo2", updated_at=NOW - timedelta(minutes=4)))
        aggregator = FakeAggregator({})

        teams = await TeamStatsCache(store, aggregator).get_team_stats([URL1, URL2], now=NOW)

        assert aggregator.calls == []
        assert {t.full_name for t in teams} == {"alice/repo1", "bob/repo2"}

    @pytest.mark.asyncio
    async def test_miss_fetches_every_repository(self, store) -> None:
        """Test data refreshed six minutes ago triggers one fetch per repository."""
        store.replace(make_stats(1, "alice/repo1", updated_at=NOW - timedelta(minutes=6)))
        aggregator = FakeAggregator(
            {URL1: make_stats(1, "alice/repo1"), URL2: make_stats(2, "bob/repo2")}
        )

        teams = await TeamStatsCache(store, aggregator).get_team_stats([URL1, URL2], now=NOW)

        assert sorted(aggregator.calls) == [URL1, URL2]
        assert all(t.updated_at == NOW for t in teams)

    @pytest.mark.asyncio
    async def test_empty_store_refreshes(self, store) -> None:
        """Test an empty store always triggers a refresh."""
        aggregator = FakeAggregator({URL1: make_stats(1, "alice/repo1")})

        teams = await TeamStatsCache(store, aggregator).get_team_stats([URL1], now=NOW)

        assert aggregator.calls == [URL1]
        assert [t.full_name for t in teams] == ["alice/repo1"]
        assert store.get(1).updated_at == NOW

    @pytest.mark.asyncio
    async def test_newest_record_decides(self, store) -> None:
        """Test one recent record keeps the whole stored set fresh."""
        store.replace(make_stats(1, "alice/repo1", updated_at=NOW - timedelta(hours=2)))
        store.replace(make_stats(2, "bob/repo2", updated_at=NOW - timedelta(minutes=1)))
        aggregator = FakeAggregator({})

        teams = await TeamStatsCache(store, aggregator).get_team_stats([URL1, URL2], now=NOW)

        assert aggregator.calls == []
        assert len(teams) == 2

    def test_is_fresh_boundary(self, store) -> None:
        """Test a record exactly one TTL old is stale."""
        cache = TeamStatsCache(store, FakeAggregator({}), ttl=timedelta(minutes=5))

        assert not cache.is_fresh([make_stats(1, "a/b", updated_at=NOW - timedelta(minutes=5))], NOW)
        assert cache.is_fresh([make_stats(1, "a/b", updated_at=NOW - timedelta(seconds=299))], NOW)
        assert not cache.is_fresh([make_stats(1, "a/b")], NOW)


class TestRefresh:
    """Tests for batch and single refreshes."""

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_stale_record(self, store) -> None:
        """Test a failing repository is skipped and its stored record left alone."""
        stale = make_stats(3, "carol/repo3", total_commits=25, updated_at=NOW - timedelta(hours=1))
        store.replace(stale)
        aggregator = FakeAggregator(
            {
                URL1: make_stats(1, "alice/repo1", total_commits=10, commits_today=2),
                URL2: make_stats(2, "bob/repo2", total_commits=40, commits_today=5),
                URL3: UpstreamFetchError(RepositoryIdentifier("carol", "repo3"), "Not found"),
            }
        )

        report = await TeamStatsCache(store, aggregator).refresh([URL1, URL2, URL3], now=NOW)

        assert [t.full_name for t in report.statistics] == ["bob/repo2", "alice/repo1"]
        assert [f.url for f in report.failures] == [URL3]
        assert "Not found" in report.failures[0].error
        assert store.get(3) == stale

    @pytest.mark.asyncio
    async def test_invalid_url_is_a_failure(self, store) -> None:
        """Test an unparseable URL is reported rather than raised."""
        aggregator = FakeAggregator({URL1: make_stats(1, "alice/repo1")})

        report = await TeamStatsCache(store, aggregator).refresh([URL1, "not-a-url"], now=NOW)

        assert len(report.statistics) == 1
        assert report.failures[0].url == "not-a-url"
        assert "Invalid GitHub URL" in report.failures[0].error

    @pytest.mark.asyncio
    async def test_no_urls(self, store) -> None:
        """Test refreshing nothing performs no work."""
        aggregator = FakeAggregator({})

        report = await TeamStatsCache(store, aggregator).refresh([], now=NOW)

        assert report.outcomes == []
        assert aggregator.calls == []

    @pytest.mark.asyncio
    async def test_end_to_end_ordering(self, store) -> None:
        """Test stats from an empty store come back in leaderboard order."""
        aggregator = FakeAggregator(
            {
                URL1: make_stats(1, "alice/repo1", total_commits=10, commits_today=2),
                URL2: make_stats(2, "bob/repo2", total_commits=40, commits_today=5),
            }
        )

        teams = await TeamStatsCache(store, aggregator).get_team_stats([URL1, URL2], now=NOW)

        assert [(t.full_name, t.commits_today, t.total_commits) for t in teams] == [
            ("bob/repo2", 5, 40),
            ("alice/repo1", 2, 10),
        ]
        assert [t.full_name for t in store.load_all()] == ["bob/repo2", "alice/repo1"]

    @pytest.mark.asyncio
    async def test_refresh_replaces_previous_record(self, store) -> None:
        """Test a refreshed repository has exactly one stored record."""
        store.replace(make_stats(1, "alice/repo1", total_commits=5, commits_today=1))
        aggregator = FakeAggregator({URL1: make_stats(1, "alice/repo1", total_commits=12)})

        await TeamStatsCache(store, aggregator).refresh([URL1], now=NOW)

        stored = store.load_all()
        assert len(stored) == 1
        assert stored[0].total_commits == 12

    @pytest.mark.asyncio
    async def test_hackathon_scope(self, store) -> None:
        """Test refreshed records carry the hackathon and are read back by it."""
        store.replace(make_stats(9, "zed/other", updated_at=NOW))
        aggregator = FakeAggregator({URL1: make_stats(1, "alice/repo1")})
        cache = TeamStatsCache(store, aggregator)

        teams = await cache.get_team_stats([URL1], hackathon_id="hack-1", now=NOW)

        assert aggregator.calls == [URL1]
        assert [t.hackathon_id for t in teams] == ["hack-1"]
        assert [t.full_name for t in store.load_all(hackathon_id="hack-1")] == ["alice/repo1"]

    @pytest.mark.asyncio
    async def test_refresh_one_propagates_errors(self, store) -> None:
        """Test a single refresh raises instead of reporting."""
        cache = TeamStatsCache(store, FakeAggregator({}))

        with pytest.raises(UpstreamFetchError):
            await cache.refresh_one(URL1, now=NOW)
        with pytest.raises(InvalidReference):
            await cache.refresh_one("nope", now=NOW)

    @pytest.mark.asyncio
    async def test_refresh_one_persists(self, store) -> None:
        """Test a single refresh stamps and stores the record."""
        cache = TeamStatsCache(store, FakeAggregator({URL2: make_stats(2, "bob/repo2")}))

        stats = await cache.refresh_one(URL2, hackathon_id="hack-1", now=NOW)

        assert stats.updated_at == NOW
        assert store.get(2).hackathon_id == "hack-1"

    @pytest.mark.asyncio
    async def test_refresh_stamps_each_repository_hackathon(self, store) -> None:
        """Test an unscoped refresh keeps each repository's own hackathon."""
        aggregator = FakeAggregator(
            {URL1: make_stats(1, "alice/repo1"), URL2: make_stats(2, "bob/repo2")}
        )
        cache = TeamStatsCache(store, aggregator)

        report = await cache.refresh([URL1, URL2], now=NOW, scopes={URL1: "hack-1"})

        assert {s.full_name: s.hackathon_id for s in report.statistics} == {
            "alice/repo1": "hack-1",
            "bob/repo2": None,
        }
        assert [t.full_name for t in store.load_all(hackathon_id="hack-1")] == ["alice/repo1"]


class TestRefreshReport:
    """Tests for RefreshReport."""

    def test_statistics_and_failures(self) -> None:
        """Test successes are ordered and failures listed separately."""
        report = RefreshReport(
            outcomes=[
                RefreshOutcome(URL1, statistics=make_stats(1, "alice/repo1", commits_today=1)),
                RefreshOutcome(URL3, error="boom"),
                RefreshOutcome(URL2, statistics=make_stats(2, "bob/repo2", commits_today=3)),
            ]
        )

        assert [s.id for s in report.statistics] == [2, 1]
        assert [f.url for f in report.failures] == [URL3]
        assert not report.failures[0].ok
