"""Configuration management for hacktion."""

from pathlib import Path

import yaml
from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from hacktion.storage import ConfigStore

FALLBACK_REPOSITORIES = [
    "https://github.com/vercel/next.js",
    "https://github.com/facebook/react",
    "https://github.com/microsoft/vscode",
]


class RepoEntry(BaseModel):
    """Repository listed in repos.yaml."""

    owner: str
    name: str
    team_name: str | None = None

    @property
    def url(self) -> str:
        return f"https://github.com/{self.owner}/{self.name}"


class ReposFile(BaseModel):
    """Repository list configuration loaded from repos.yaml."""

    defaults: dict[str, str] = Field(default_factory=dict)
    repos: list[dict]

    def get_repos(self) -> list[RepoEntry]:
        """Resolve repos with defaults applied.

        Returns:
            List of RepoEntry with owner defaulted if not specified.
        """
        default_owner = self.defaults.get("owner", "")
        return [
            RepoEntry(
                owner=r.get("owner", default_owner),
                name=r["name"],
                team_name=r.get("team_name") or r.get("team"),
            )
            for r in self.repos
        ]


class Settings(BaseSettings):
    """Application settings from environment variables and config files."""

    model_config = SettingsConfigDict(
        env_prefix="HACKTION_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    github_token: str = Field(
        default="", validation_alias=AliasChoices("HACKTION_GITHUB_TOKEN", "GITHUB_TOKEN")
    )
    github_repositories: str = Field(
        default="",
        validation_alias=AliasChoices("HACKTION_GITHUB_REPOSITORIES", "GITHUB_REPOSITORIES"),
    )
    data_dir: Path = Path("data")
    config_dir: Path = Path("config")
    cache_ttl_seconds: int = 300
    request_timeout: float = 30.0
    fetch_deadline: float = 60.0
    api_host: str = "127.0.0.1"
    api_port: int = Field(default=3001, validation_alias=AliasChoices("HACKTION_API_PORT", "API_PORT"))
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    log_level: str = "INFO"

    def env_repository_urls(self) -> list[str]:
        """Repository URLs from the comma-separated environment list."""
        return [url.strip() for url in self.github_repositories.split(",") if url.strip()]

    def load_repos_file(self) -> list[RepoEntry]:
        """Load repository configuration from repos.yaml.

        Returns:
            List of configured repositories, empty if the file is missing.
        """
        repos_file = self.config_dir / "repos.yaml"
        if not repos_file.exists():
            return []

        with open(repos_file) as f:
            data = yaml.safe_load(f) or {}

        return ReposFile(**data).get_repos()


def get_settings() -> Settings:
    """Get application settings instance.

    Returns:
        Settings loaded from environment and config files.
    """
    return Settings()


def resolve_repository_urls(
    settings: Settings, config_store: ConfigStore, hackathon_id: str | None = None
) -> list[str]:
    """Decide which repositories to poll.

    For a hackathon only its stored repositories are used. Otherwise the
    first non-empty source wins: active repositories in the config store,
    the GITHUB_REPOSITORIES list, then the built-in demo repositories.

    Args:
        settings: Application settings.
        config_store: Persistent repository configuration.
        hackathon_id: Restrict to the repositories of one hackathon.

    Returns:
        Ordered list of repository URLs.
    """
    if hackathon_id is not None:
        return config_store.active_repository_urls(hackathon_id=hackathon_id)

    stored = config_store.active_repository_urls()
    if stored:
        return stored

    from_env = settings.env_repository_urls()
    if from_env:
        return from_env

    return list(FALLBACK_REPOSITORIES)
