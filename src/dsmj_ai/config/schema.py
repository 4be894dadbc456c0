"""
Pydantic models for dsmj-ai configuration.

Defines all configuration schemas using Pydantic v2 for validation,
defaults, and serialization.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


def default_home() -> Path:
    return Path.home() / ".dsmj-ai-toolkit"


class PathsConfig(BaseModel):
    """Filesystem locations of the global installation."""

    home: Path = Field(
        default_factory=default_home,
        description="Global root holding agents/, skills/ and templates/",
    )
    workspace_dir: str = Field(
        default=".claude",
        description="Per-project workspace directory shared with the host tool",
    )

    model_config = {"extra": "forbid"}

    @field_validator("home", mode="before")
    @classmethod
    def expand_home(cls, v: object) -> object:
        if isinstance(v, (str, Path)):
            return Path(v).expanduser().absolute()
        return v

    @property
    def lock_file(self) -> Path:
        """Global lock, kept beside the root because install swaps the root out."""
        return self.home.parent / f"{self.home.name}.lock"


class SourceConfig(BaseModel):
    """Where the toolkit content is downloaded from."""

    repo_url: str = "https://github.com/dsantiagomj/dsmj-ai-toolkit"
    github_api: str = "https://api.github.com/repos/dsantiagomj/dsmj-ai-toolkit"
    default_branch: str = "main"
    timeout: int = Field(default=60, ge=1, le=600, description="Timeout in seconds for git/HTTP")
    retries: int = Field(default=2, ge=0, le=10, description="Extra attempts on network failure")

    model_config = {"extra": "forbid"}


class CatalogConfig(BaseModel):
    """Community skills catalog."""

    install_category: str = Field(
        default="community",
        description="Subdirectory of .claude/skills/ where fetched skills are materialized",
    )
    fetch_timeout: int = Field(default=30, ge=1, le=600)

    model_config = {"extra": "forbid"}


class LoggingConfig(BaseModel):
    """Logging system configuration."""

    level: Literal["debug", "info", "human", "warn", "error"] = "human"
    file: Path | None = None
    verbose: int = 0

    model_config = {"extra": "forbid"}


class ToolkitConfig(BaseModel):
    """Root configuration for dsmj-ai."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "forbid"}
