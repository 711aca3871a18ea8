"""HTTP API for the dashboard frontend.

Endpoints:
    GET    /health
    GET    /api/teams[?hackathonId=]
    GET    /api/teams/{id}
    POST   /api/teams/refresh[?hackathonId=]
    GET    /api/hackathons
    POST   /api/hackathons
    GET    /api/hackathons/{id}
    DELETE /api/hackathons/{id}
    GET    /api/hackathons/{id}/teams
    POST   /api/hackathons/{id}/repositories
    GET    /api/repositories
    POST   /api/repositories
    PUT    /api/repositories/{id}
    DELETE /api/repositories/{id}
    POST   /api/repositories/{id}/refresh
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime, timedelta

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from hacktion.aggregator import StatsAggregator, UpstreamFetchError
from hacktion.cache import Aggregator, TeamStatsCache
from hacktion.config import Settings, get_settings, resolve_repository_urls
from hacktion.github_client import GitHubClient
from hacktion.models import (
    Hackathon,
    InvalidReference,
    RepositoryConfig,
    RepositoryIdentifier,
    TeamStatistics,
)
from hacktion.storage import ConfigStore, RepositoryConflict, TeamStore

logger = logging.getLogger(__name__)

router = APIRouter()


class HackathonCreate(BaseModel):
    id: str | None = None
    name: str
    description: str = ""
    startDate: date | None = None
    endDate: date | None = None


class RepositoryCreate(BaseModel):
    url: str
    name: str | None = None
    hackathonId: str | None = None


class RepositoryUpdate(BaseModel):
    active: bool


class HackathonDetail(Hackathon):
    repositories: list[RepositoryConfig]
    teams: list[TeamStatistics]


def _ttl(settings: Settings) -> timedelta:
    return timedelta(seconds=settings.cache_ttl_seconds)


def _error(status_code: int, error: str, details: str | None = None) -> JSONResponse:
    body = {"error": error}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def get_cache(request: Request) -> TeamStatsCache:
    return request.app.state.cache


def get_team_store(request: Request) -> TeamStore:
    return request.app.state.team_store


def get_config_store(request: Request) -> ConfigStore:
    return request.app.state.config_store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


@router.get("/health")
async def health_check():
    """Simple API health check."""
    return {"status": "healthy", "timestamp": datetime.now(UTC).isoformat()}


def _polling_plan(
    settings: Settings, config_store: ConfigStore, hackathon_id: str | None
) -> tuple[list[str], dict[str, str | None]]:
    urls = resolve_repository_urls(settings, config_store, hackathon_id=hackathon_id)
    return urls, config_store.hackathon_by_url()


@router.get("/api/teams", response_model=list[TeamStatistics])
async def list_teams(
    hackathon_id: str | None = Query(default=None, alias="hackathonId"),
    cache: TeamStatsCache = Depends(get_cache),
    config_store: ConfigStore = Depends(get_config_store),
    settings: Settings = Depends(get_app_settings),
):
    """Cached-or-fresh statistics for all configured teams."""
    urls, scopes = await asyncio.to_thread(_polling_plan, settings, config_store, hackathon_id)
    return await cache.get_team_stats(urls, hackathon_id=hackathon_id, scopes=scopes)


@router.post("/api/teams/refresh")
async def refresh_teams(
    hackathon_id: str | None = Query(default=None, alias="hackathonId"),
    cache: TeamStatsCache = Depends(get_cache),
    config_store: ConfigStore = Depends(get_config_store),
    settings: Settings = Depends(get_app_settings),
):
    """Refresh every configured team, bypassing the cache."""
    urls, scopes = await asyncio.to_thread(_polling_plan, settings, config_store, hackathon_id)
    if not urls:
        return {"message": "No repositories configured", "teams": 0, "failed": []}

    report = await cache.refresh(urls, hackathon_id=hackathon_id, scopes=scopes)
    return {
        "message": "Data refreshed successfully",
        "teams": len(report.statistics),
        "failed": [{"url": o.url, "error": o.error} for o in report.failures],
    }


@router.get("/api/teams/{team_id}", response_model=TeamStatistics)
def get_team(team_id: str, team_store: TeamStore = Depends(get_team_store)):
    try:
        numeric_id = int(team_id)
    except ValueError:
        return _error(400, "Invalid team ID")

    team = team_store.get(numeric_id)
    if team is None:
        return _error(404, "Team not found")
    return team


@router.get("/api/hackathons", response_model=list[Hackathon])
def list_hackathons(config_store: ConfigStore = Depends(get_config_store)):
    return config_store.list_hackathons()


@router.post("/api/hackathons")
def create_hackathon(
    payload: HackathonCreate, config_store: ConfigStore = Depends(get_config_store)
):
    hackathon = config_store.create_hackathon(
        name=payload.name,
        description=payload.description,
        start_date=payload.startDate,
        end_date=payload.endDate,
        hackathon_id=payload.id,
    )
    return {"success": True, "id": hackathon.id}


@router.get("/api/hackathons/{hackathon_id}", response_model=HackathonDetail)
def get_hackathon(
    hackathon_id: str,
    config_store: ConfigStore = Depends(get_config_store),
    team_store: TeamStore = Depends(get_team_store),
):
    """Hackathon with its repositories and stored team statistics."""
    hackathon = config_store.get_hackathon(hackathon_id)
    if hackathon is None:
        return _error(404, "Hackathon not found")

    return HackathonDetail(
        **hackathon.model_dump(),
        repositories=config_store.list_repositories(
            hackathon_id=hackathon_id, include_inactive=True
        ),
        teams=team_store.load_all(hackathon_id=hackathon_id),
    )


@router.delete("/api/hackathons/{hackathon_id}")
def delete_hackathon(
    hackathon_id: str,
    config_store: ConfigStore = Depends(get_config_store),
    team_store: TeamStore = Depends(get_team_store),
):
    """Delete a hackathon, its repositories and their statistics."""
    for repository in config_store.delete_hackathon(hackathon_id):
        team_store.delete_for_url(repository.url)
    return {"success": True}


@router.get("/api/hackathons/{hackathon_id}/teams", response_model=list[TeamStatistics])
async def list_hackathon_teams(
    hackathon_id: str,
    cache: TeamStatsCache = Depends(get_cache),
    config_store: ConfigStore = Depends(get_config_store),
    settings: Settings = Depends(get_app_settings),
):
    urls, scopes = await asyncio.to_thread(_polling_plan, settings, config_store, hackathon_id)
    return await cache.get_team_stats(urls, hackathon_id=hackathon_id, scopes=scopes)


def _add_repository(
    config_store: ConfigStore, payload: RepositoryCreate, hackathon_id: str | None
) -> RepositoryConfig:
    # Reject URLs the aggregator could never parse.
    RepositoryIdentifier.parse(payload.url)
    return config_store.add_repository(payload.url, team_name=payload.name, hackathon_id=hackathon_id)


@router.get("/api/repositories", response_model=list[RepositoryConfig])
def list_repositories(config_store: ConfigStore = Depends(get_config_store)):
    return config_store.list_repositories(include_inactive=True)


@router.post("/api/repositories")
def add_repository(
    payload: RepositoryCreate, config_store: ConfigStore = Depends(get_config_store)
):
    repository = _add_repository(config_store, payload, payload.hackathonId)
    return {"success": True, "id": repository.id}


@router.post("/api/hackathons/{hackathon_id}/repositories")
def add_hackathon_repository(
    hackathon_id: str,
    payload: RepositoryCreate,
    config_store: ConfigStore = Depends(get_config_store),
):
    if config_store.get_hackathon(hackathon_id) is None:
        return _error(404, "Hackathon not found")
    repository = _add_repository(config_store, payload, hackathon_id)
    return {"success": True, "id": repository.id}


@router.put("/api/repositories/{repository_id}")
def update_repository(
    repository_id: int,
    payload: RepositoryUpdate,
    config_store: ConfigStore = Depends(get_config_store),
):
    """Pause or resume polling of a repository."""
    if not config_store.set_active(repository_id, payload.active):
        return _error(404, "Repository not found")
    return {"success": True}


@router.delete("/api/repositories/{repository_id}")
def delete_repository(
    repository_id: int,
    config_store: ConfigStore = Depends(get_config_store),
    team_store: TeamStore = Depends(get_team_store),
):
    """Stop tracking a repository and drop its stored statistics."""
    repository = config_store.delete_repository(repository_id)
    if repository is None:
        return _error(404, "Repository not found")
    team_store.delete_for_url(repository.url)
    return {"success": True}


@router.post("/api/repositories/{repository_id}/refresh", response_model=TeamStatistics)
async def refresh_repository(
    repository_id: int,
    cache: TeamStatsCache = Depends(get_cache),
    config_store: ConfigStore = Depends(get_config_store),
):
    """Refresh one repository; failures are reported, not skipped."""
    repository = await asyncio.to_thread(config_store.get_repository, repository_id)
    if repository is None:
        return _error(404, "Repository not found")
    return await cache.refresh_one(repository.url, hackathon_id=repository.hackathon_id)


async def _invalid_reference_handler(request: Request, exc: InvalidReference) -> JSONResponse:
    return _error(400, "Invalid repository URL", str(exc))


async def _conflict_handler(request: Request, exc: RepositoryConflict) -> JSONResponse:
    return _error(409, "Repository already registered", str(exc))


async def _upstream_error_handler(request: Request, exc: UpstreamFetchError) -> JSONResponse:
    logger.error("GitHub fetch failed: %s", exc)
    return _error(502, "Failed to fetch data from GitHub", str(exc))


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Request to %s failed", request.url.path)
    return _error(500, "Internal server error", str(exc))


def create_app(
    settings: Settings | None = None,
    team_store: TeamStore | None = None,
    config_store: ConfigStore | None = None,
    aggregator: Aggregator | None = None,
) -> FastAPI:
    """Build the API application.

    Stores and the aggregator are injected; whatever is not given is built
    from ``settings``. Without an aggregator a GitHub client is opened for
    the lifetime of the app.

    Args:
        settings: Application settings (default: from environment).
        team_store: Persisted team statistics.
        config_store: Hackathon and repository configuration.
        aggregator: Source of fresh statistics.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or get_settings()
    team_store = team_store or TeamStore(settings.data_dir)
    config_store = config_store or ConfigStore(settings.data_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if aggregator is not None:
            app.state.cache = TeamStatsCache(team_store, aggregator, ttl=_ttl(settings))
            yield
            return

        async with GitHubClient(settings.github_token, timeout=settings.request_timeout) as client:
            app.state.cache = TeamStatsCache(
                team_store,
                StatsAggregator(client, deadline_seconds=settings.fetch_deadline),
                ttl=_ttl(settings),
            )
            yield

    app = FastAPI(title="hacktion", lifespan=lifespan)
    app.state.settings = settings
    app.state.team_store = team_store
    app.state.config_store = config_store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_exception_handler(InvalidReference, _invalid_reference_handler)
    app.add_exception_handler(RepositoryConflict, _conflict_handler)
    app.add_exception_handler(UpstreamFetchError, _upstream_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
    app.include_router(router)
    return app
