"""Freshness-gated cache in front of the stats aggregator."""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol

from hacktion.aggregator import UpstreamFetchError
from hacktion.models import InvalidReference, RepositoryIdentifier, TeamStatistics, leaderboard_order
from hacktion.storage import TeamStore

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(minutes=5)


class Aggregator(Protocol):
    async def aggregate(self, reference: RepositoryIdentifier | str) -> TeamStatistics: ...


@dataclass
class RefreshOutcome:
    """Result of refreshing one repository.

    Attributes:
        url: Repository URL that was refreshed.
        statistics: Fresh statistics on success.
        error: Failure description on failure.
    """

    url: str
    statistics: TeamStatistics | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.statistics is not None


@dataclass
class RefreshReport:
    """Outcome of a batch refresh, one entry per requested repository."""

    outcomes: list[RefreshOutcome] = field(default_factory=list)

    @property
    def statistics(self) -> list[TeamStatistics]:
        return leaderboard_order([o.statistics for o in self.outcomes if o.statistics is not None])

    @property
    def failures(self) -> list[RefreshOutcome]:
        return [o for o in self.outcomes if not o.ok]


class TeamStatsCache:
    """Serves persisted team statistics while they are fresh.

    Freshness is judged on the most recently refreshed record only and
    applies to the whole stored set: either everything stored is returned
    as-is, or every requested repository is aggregated again. Store reads
    and writes run in worker threads so the event loop never blocks on
    file IO.

    Attributes:
        store: Persisted team statistics.
        aggregator: Produces fresh statistics for one repository.
        ttl: Maximum age of the newest record for a cache hit.
    """

    def __init__(self, store: TeamStore, aggregator: Aggregator, ttl: timedelta = DEFAULT_TTL):
        self.store = store
        self.aggregator = aggregator
        self.ttl = ttl

    def is_fresh(self, cached: Sequence[TeamStatistics], now: datetime) -> bool:
        stamps = [s.updated_at for s in cached if s.updated_at is not None]
        if not stamps:
            return False
        return max(stamps) > now - self.ttl

    async def get_team_stats(
        self,
        repository_urls: Sequence[str],
        hackathon_id: str | None = None,
        now: datetime | None = None,
        scopes: Mapping[str, str | None] | None = None,
    ) -> list[TeamStatistics]:
        """Return cached statistics, refreshing them first if stale.

        Args:
            repository_urls: Repositories to aggregate on a cache miss.
            hackathon_id: Scope of the cached set read back.
            now: Current time (default: now, UTC).
            scopes: Hackathon of each URL, recorded on refreshed statistics.

        Returns:
            TeamStatistics ordered by commits today, then total commits.
        """
        now = now or datetime.now(UTC)
        cached = await asyncio.to_thread(self.store.load_all, hackathon_id=hackathon_id)

        if cached and self.is_fresh(cached, now):
            logger.info("Returning %d cached teams", len(cached))
            return cached

        report = await self.refresh(
            repository_urls, hackathon_id=hackathon_id, now=now, scopes=scopes
        )
        return report.statistics

    async def _refresh_url(self, url: str) -> RefreshOutcome:
        try:
            stats = await self.aggregator.aggregate(url)
        except (InvalidReference, UpstreamFetchError) as e:
            logger.warning("Skipping %s: %s", url, e)
            return RefreshOutcome(url=url, error=str(e))
        return RefreshOutcome(url=url, statistics=stats)

    async def _persist(
        self, stats: TeamStatistics, hackathon_id: str | None, now: datetime
    ) -> TeamStatistics:
        stamped = stats.model_copy(update={"updated_at": now, "hackathon_id": hackathon_id})
        await asyncio.to_thread(self.store.replace, stamped)
        return stamped

    async def refresh(
        self,
        repository_urls: Sequence[str],
        hackathon_id: str | None = None,
        now: datetime | None = None,
        scopes: Mapping[str, str | None] | None = None,
    ) -> RefreshReport:
        """Aggregate every repository in parallel and persist the successes.

        Repositories that fail keep whatever record is already stored.

        Args:
            repository_urls: Repositories to aggregate.
            hackathon_id: Hackathon recorded for URLs missing from ``scopes``.
            now: Refresh timestamp (default: now, UTC).
            scopes: Hackathon each URL is registered for.

        Returns:
            RefreshReport with one outcome per URL.
        """
        now = now or datetime.now(UTC)
        scopes = scopes or {}
        if not repository_urls:
            logger.info("No repositories configured")
            return RefreshReport()

        logger.info("Fetching fresh data for %d repositories", len(repository_urls))
        outcomes = await asyncio.gather(*(self._refresh_url(url) for url in repository_urls))

        for outcome in outcomes:
            if outcome.statistics is not None:
                outcome.statistics = await self._persist(
                    outcome.statistics, scopes.get(outcome.url, hackathon_id), now
                )

        report = RefreshReport(outcomes=list(outcomes))
        logger.info(
            "Refreshed %d teams, %d failed", len(report.statistics), len(report.failures)
        )
        return report

    async def refresh_one(
        self, url: str, hackathon_id: str | None = None, now: datetime | None = None
    ) -> TeamStatistics:
        """Refresh a single repository.

        Raises:
            InvalidReference: If ``url`` cannot be parsed.
            UpstreamFetchError: If fetching from GitHub fails.
        """
        stats = await self.aggregator.aggregate(url)
        return await self._persist(stats, hackathon_id, now or datetime.now(UTC))
