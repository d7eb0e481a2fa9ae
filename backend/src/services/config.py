"""Application configuration helpers."""

from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_STORAGE_ROOT = PROJECT_ROOT / "data"

_FALSE_VALUES = {"0", "false", "no", "off", ""}


class AppConfig(BaseModel):
    """Runtime configuration loaded from environment variables."""

    model_config = ConfigDict(frozen=True)

    storage_root: Path = Field(..., description="Directory holding folders, pages and the git repository")
    cache_ttl_seconds: float = Field(
        default=30.0,
        gt=0,
        description="How long folder trees, listings and page content stay cached",
    )
    sync_commits: bool = Field(
        default=False,
        description="Await each git commit before returning (test mode) instead of fire-and-forget",
    )
    git_binary: str = Field(default="git", description="git executable used for version control")
    git_timeout_seconds: float = Field(default=60.0, gt=0, description="Per-command git timeout")
    git_author_name: str = Field(default="Docstore", min_length=1)
    git_author_email: str = Field(default="docstore@local", min_length=1)
    commit_queue_size: int = Field(
        default=100,
        ge=0,
        description="Maximum queued commits before writers wait (0 means unbounded)",
    )

    @field_validator("storage_root", mode="before")
    @classmethod
    def _normalize_storage_root(cls, value: str | Path | None) -> Path:
        if value is None or value == "":
            raise ValueError("STORAGE_ROOT is required")
        if isinstance(value, Path):
            path = value
        else:
            path = Path(value)
        return path.expanduser().resolve()


def _read_env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(key, default)


def _read_bool(key: str, default: str = "false") -> bool:
    return (_read_env(key, default) or "").strip().lower() not in _FALSE_VALUES


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load and cache application configuration."""
    # TEST_DATA_DIR points the store at a scratch directory and forces synchronous commits.
    test_data_dir = _read_env("TEST_DATA_DIR")
    storage_root = test_data_dir or _read_env("STORAGE_ROOT", str(DEFAULT_STORAGE_ROOT))
    sync_commits = bool(test_data_dir) or _read_bool("SYNC_COMMITS")

    config = AppConfig(
        storage_root=storage_root,
        cache_ttl_seconds=float(_read_env("CACHE_TTL_SECONDS", "30")),
        sync_commits=sync_commits,
        git_binary=_read_env("GIT_BINARY", "git"),
        git_timeout_seconds=float(_read_env("GIT_TIMEOUT_SECONDS", "60")),
        git_author_name=_read_env("COMMIT_AUTHOR_NAME", "Docstore"),
        git_author_email=_read_env("COMMIT_AUTHOR_EMAIL", "docstore@local"),
        commit_queue_size=int(_read_env("COMMIT_QUEUE_SIZE", "100")),
    )
    # Ensure the storage root exists for downstream services.
    config.storage_root.mkdir(parents=True, exist_ok=True)
    return config


def reload_config() -> AppConfig:
    """Clear cached config (useful for tests) and reload."""
    get_config.cache_clear()
    return get_config()


__all__ = ["AppConfig", "get_config", "reload_config", "PROJECT_ROOT", "DEFAULT_STORAGE_ROOT"]
