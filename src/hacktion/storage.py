"""File-based table storage using Parquet format."""

import secrets
import string
import threading
from datetime import UTC, date, datetime
from pathlib import Path

import polars as pl

from hacktion.models import (
    Hackathon,
    InvalidReference,
    RepositoryConfig,
    RepositoryIdentifier,
    TeamStatistics,
)

TEAMS_SCHEMA = {
    "id": pl.Int64,
    "name": pl.Utf8,
    "full_name": pl.Utf8,
    "owner": pl.Utf8,
    "avatar_url": pl.Utf8,
    "description": pl.Utf8,
    "html_url": pl.Utf8,
    "total_commits": pl.Int64,
    "commits_today": pl.Int64,
    "issues_open": pl.Int64,
    "issues_closed": pl.Int64,
    "issues_completion_rate": pl.Float64,
    "pull_requests_merged": pl.Int64,
    "last_commit_time": pl.Datetime("us", "UTC"),
    "code_additions": pl.Int64,
    "code_deletions": pl.Int64,
    "updated_at": pl.Datetime("us", "UTC"),
    "hackathon_id": pl.Utf8,
}

CONTRIBUTORS_SCHEMA = {
    "team_id": pl.Int64,
    "login": pl.Utf8,
    "avatar_url": pl.Utf8,
    "commits": pl.Int64,
    "additions": pl.Int64,
    "deletions": pl.Int64,
}

TIMELINE_SCHEMA = {
    "team_id": pl.Int64,
    "date": pl.Date,
    "commits": pl.Int64,
    "additions": pl.Int64,
    "deletions": pl.Int64,
}

REPOSITORIES_SCHEMA = {
    "id": pl.Int64,
    "url": pl.Utf8,
    "team_name": pl.Utf8,
    "hackathon_id": pl.Utf8,
    "active": pl.Boolean,
    "created_at": pl.Datetime("us", "UTC"),
}

HACKATHONS_SCHEMA = {
    "id": pl.Utf8,
    "name": pl.Utf8,
    "description": pl.Utf8,
    "start_date": pl.Date,
    "end_date": pl.Date,
    "created_at": pl.Datetime("us", "UTC"),
}

HACKATHON_ID_ALPHABET = string.ascii_letters + string.digits


class RepositoryConflict(ValueError):
    """Raised when a URL is already registered under another hackathon."""


def _utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC)


def _frame(rows: list[dict], schema: dict) -> pl.DataFrame:
    return pl.DataFrame([{col: row.get(col) for col in schema} for row in rows], schema=schema)


class ParquetTable:
    """One table persisted as a single Parquet file.

    Attributes:
        data_path: Path to the Parquet file.
        schema: Column name to polars dtype mapping.
    """

    def __init__(self, data_path: Path, schema: dict):
        self.data_path = data_path
        self.schema = schema

    def read(self) -> pl.DataFrame:
        """Load the table or return an empty DataFrame with the schema."""
        if not self.data_path.exists():
            return pl.DataFrame(schema=self.schema)

        return pl.read_parquet(self.data_path)

    def write(self, df: pl.DataFrame) -> None:
        self.data_path.parent.mkdir(parents=True, exist_ok=True)
        df.write_parquet(self.data_path)

    def append(self, rows: list[dict]) -> None:
        self.write(self.read().vstack(_frame(rows, self.schema)))

    def delete_where(self, predicate: pl.Expr) -> int:
        """Remove matching rows.

        Returns:
            Number of rows removed.
        """
        df = self.read()
        kept = df.filter(~predicate.fill_null(False))
        removed = len(df) - len(kept)
        if removed:
            self.write(kept)
        return removed


class TeamStore:
    """Persisted team statistics.

    Three tables keyed by GitHub repository id: ``teams`` holds the
    scalar counters, ``contributors`` and ``commits_timeline`` hold the
    per-login and per-day rollups. Rows are validated back into
    TeamStatistics on every read. Reads and writes are serialized so one
    store can be shared by worker threads.

    Attributes:
        data_dir: Directory holding the Parquet files.
    """

    def __init__(self, data_dir: Path):
        """Initialize storage in ``data_dir``.

        Args:
            data_dir: Directory for the team tables.
        """
        self.data_dir = data_dir
        self.teams = ParquetTable(data_dir / "teams.parquet", TEAMS_SCHEMA)
        self.contributors = ParquetTable(data_dir / "contributors.parquet", CONTRIBUTORS_SCHEMA)
        self.timeline = ParquetTable(data_dir / "commits_timeline.parquet", TIMELINE_SCHEMA)
        self._lock = threading.RLock()

    def _hydrate(self, teams: pl.DataFrame) -> list[TeamStatistics]:
        if teams.is_empty():
            return []

        ids = teams["id"].to_list()
        contributors = (
            self.contributors.read()
            .filter(pl.col("team_id").is_in(ids))
            .sort(["team_id", "commits", "login"], descending=[False, True, False])
        )
        timeline = self.timeline.read().filter(pl.col("team_id").is_in(ids)).sort(["team_id", "date"])

        by_team: dict[int, dict[str, list[dict]]] = {
            team_id: {"contributors": [], "commits_over_time": []} for team_id in ids
        }
        for row in contributors.iter_rows(named=True):
            by_team[row.pop("team_id")]["contributors"].append(row)
        for row in timeline.iter_rows(named=True):
            by_team[row.pop("team_id")]["commits_over_time"].append(row)

        return [
            TeamStatistics.model_validate({**row, **by_team[row["id"]]})
            for row in teams.iter_rows(named=True)
        ]

    def load_all(self, hackathon_id: str | None = None) -> list[TeamStatistics]:
        """Load persisted statistics, most active team first.

        Args:
            hackathon_id: Only return teams recorded for this hackathon.

        Returns:
            TeamStatistics ordered by commits today, then total commits (desc).
        """
        with self._lock:
            teams = self.teams.read()
            if hackathon_id is not None:
                teams = teams.filter(pl.col("hackathon_id") == hackathon_id)
            teams = teams.sort(["commits_today", "total_commits"], descending=[True, True])
            return self._hydrate(teams)

    def get(self, team_id: int) -> TeamStatistics | None:
        with self._lock:
            found = self._hydrate(self.teams.read().filter(pl.col("id") == team_id))
        return found[0] if found else None

    def replace(self, stats: TeamStatistics) -> None:
        """Insert statistics, replacing any stored record with the same id.

        Contributor and timeline rows of the previous record are dropped
        before the new ones are written.

        Args:
            stats: Statistics to persist.
        """
        team_row = stats.model_dump(exclude={"contributors", "commits_over_time"})
        team_row["last_commit_time"] = _utc(team_row["last_commit_time"])
        team_row["updated_at"] = _utc(team_row["updated_at"])
        contributor_rows = [{"team_id": stats.id, **c.model_dump()} for c in stats.contributors]
        timeline_rows = [{"team_id": stats.id, **d.model_dump()} for d in stats.commits_over_time]

        with self._lock:
            self.teams.write(
                self.teams.read()
                .filter(pl.col("id") != stats.id)
                .vstack(_frame([team_row], TEAMS_SCHEMA))
            )
            self.contributors.write(
                self.contributors.read()
                .filter(pl.col("team_id") != stats.id)
                .vstack(_frame(contributor_rows, CONTRIBUTORS_SCHEMA))
            )
            self.timeline.write(
                self.timeline.read()
                .filter(pl.col("team_id") != stats.id)
                .vstack(_frame(timeline_rows, TIMELINE_SCHEMA))
            )

    def delete(self, team_id: int) -> bool:
        """Remove a team and its rollups.

        Returns:
            True if a team record existed.
        """
        with self._lock:
            removed = self.teams.delete_where(pl.col("id") == team_id)
            self.contributors.delete_where(pl.col("team_id") == team_id)
            self.timeline.delete_where(pl.col("team_id") == team_id)
        return removed > 0

    def delete_by_full_name(self, full_name: str) -> int:
        """Remove every team recorded for ``owner/name``.

        Returns:
            Number of teams removed.
        """
        with self._lock:
            ids = self.teams.read().filter(pl.col("full_name") == full_name)["id"].to_list()
            return sum(1 for team_id in ids if self.delete(team_id))

    def delete_for_url(self, url: str) -> int:
        """Remove the teams recorded for a repository URL; unparseable URLs match nothing."""
        try:
            ref = RepositoryIdentifier.parse(url)
        except InvalidReference:
            return 0
        return self.delete_by_full_name(ref.full_name)


class ConfigStore:
    """Hackathons and the repositories registered for tracking.

    A repository URL belongs to at most one hackathon (or to none).

    Attributes:
        data_dir: Directory holding the Parquet files.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self.repositories = ParquetTable(data_dir / "repositories.parquet", REPOSITORIES_SCHEMA)
        self.hackathons = ParquetTable(data_dir / "hackathons.parquet", HACKATHONS_SCHEMA)
        self._lock = threading.RLock()

    def create_hackathon(
        self,
        name: str,
        description: str = "",
        start_date: date | None = None,
        end_date: date | None = None,
        hackathon_id: str | None = None,
    ) -> Hackathon:
        """Register a hackathon.

        Args:
            name: Display name.
            description: Free text description.
            start_date: First day of the event.
            end_date: Last day of the event.
            hackathon_id: Explicit id; a random 12 character id otherwise.

        Returns:
            The stored Hackathon.
        """
        hackathon = Hackathon(
            id=hackathon_id
            or "".join(secrets.choice(HACKATHON_ID_ALPHABET) for _ in range(12)),
            name=name,
            description=description,
            start_date=start_date,
            end_date=end_date,
            created_at=datetime.now(UTC),
        )
        with self._lock:
            self.hackathons.delete_where(pl.col("id") == hackathon.id)
            self.hackathons.append([hackathon.model_dump()])
        return hackathon

    def list_hackathons(self) -> list[Hackathon]:
        with self._lock:
            df = self.hackathons.read().sort("created_at", descending=True)
        return [Hackathon.model_validate(row) for row in df.iter_rows(named=True)]

    def get_hackathon(self, hackathon_id: str) -> Hackathon | None:
        with self._lock:
            df = self.hackathons.read().filter(pl.col("id") == hackathon_id)
        if df.is_empty():
            return None
        return Hackathon.model_validate(df.row(0, named=True))

    def delete_hackathon(self, hackathon_id: str) -> list[RepositoryConfig]:
        """Remove a hackathon together with its repositories.

        Returns:
            The repository configurations that were removed.
        """
        with self._lock:
            removed = self.list_repositories(hackathon_id=hackathon_id, include_inactive=True)
            self.repositories.delete_where(pl.col("hackathon_id") == hackathon_id)
            self.hackathons.delete_where(pl.col("id") == hackathon_id)
        return removed

    def add_repository(
        self, url: str, team_name: str | None = None, hackathon_id: str | None = None
    ) -> RepositoryConfig:
        """Register a repository URL.

        Adding a URL that is already registered for the same hackathon
        returns the existing entry.

        Returns:
            The stored RepositoryConfig.

        Raises:
            RepositoryConflict: If the URL is registered for another hackathon
                (or for none, when ``hackathon_id`` is given).
        """
        with self._lock:
            df = self.repositories.read()
            existing = df.filter(pl.col("url") == url)
            if not existing.is_empty():
                config = RepositoryConfig.model_validate(existing.row(0, named=True))
                if config.hackathon_id != hackathon_id:
                    raise RepositoryConflict(
                        f"{url} is already registered"
                        + (f" for hackathon {config.hackathon_id}" if config.hackathon_id else "")
                    )
                return config

            config = RepositoryConfig(
                id=(df["id"].max() or 0) + 1,
                url=url,
                team_name=team_name,
                hackathon_id=hackathon_id,
                active=True,
                created_at=datetime.now(UTC),
            )
            self.repositories.append([config.model_dump()])
        return config

    def get_repository(self, repository_id: int) -> RepositoryConfig | None:
        with self._lock:
            df = self.repositories.read().filter(pl.col("id") == repository_id)
        if df.is_empty():
            return None
        return RepositoryConfig.model_validate(df.row(0, named=True))

    def list_repositories(
        self, hackathon_id: str | None = None, include_inactive: bool = False
    ) -> list[RepositoryConfig]:
        """List registered repositories in registration order.

        Args:
            hackathon_id: Only repositories of this hackathon.
            include_inactive: Also return deactivated repositories.
        """
        with self._lock:
            df = self.repositories.read()
        if hackathon_id is not None:
            df = df.filter(pl.col("hackathon_id") == hackathon_id)
        if not include_inactive:
            df = df.filter(pl.col("active"))
        return [RepositoryConfig.model_validate(row) for row in df.sort("id").iter_rows(named=True)]

    def active_repository_urls(self, hackathon_id: str | None = None) -> list[str]:
        return [r.url for r in self.list_repositories(hackathon_id=hackathon_id)]

    def hackathon_by_url(self) -> dict[str, str | None]:
        """Map every registered URL to the hackathon it belongs to."""
        return {
            r.url: r.hackathon_id for r in self.list_repositories(include_inactive=True)
        }

    def set_active(self, repository_id: int, active: bool) -> bool:
        with self._lock:
            df = self.repositories.read()
            if df.filter(pl.col("id") == repository_id).is_empty():
                return False
            self.repositories.write(
                df.with_columns(
                    pl.when(pl.col("id") == repository_id)
                    .then(pl.lit(active))
                    .otherwise(pl.col("active"))
                    .alias("active")
                )
            )
        return True

    def delete_repository(self, repository_id: int) -> RepositoryConfig | None:
        """Remove a repository configuration.

        Returns:
            The removed configuration, or None if it did not exist.
        """
        with self._lock:
            config = self.get_repository(repository_id)
            if config is not None:
                self.repositories.delete_where(pl.col("id") == repository_id)
        return config
