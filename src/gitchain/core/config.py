"""Application configuration management.

Handles loading and validating configuration from multiple sources:
    - TOML/JSON config files
    - Environment variables (GITCHAIN_* prefix)
    - Default values

Key components:
    - AppConfig: Main configuration model
    - GitSettings: Git executable discovery and validation settings
    - load_config(): Safe config loading with fallback
    - ConfigLoadResult: Metadata about config source
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from unittest.mock import patch

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from gitchain.core.result import Err, Ok
from gitchain.core.version import Version

CONFIG_ENV_VAR = "GITCHAIN_CONFIG"

MINIMUM_GIT_VERSION = "2.11.0"
MINIMUM_GIT_LFS_VERSION = "2.3.4"
DEFAULT_ADD_BATCH_SIZE = 5000


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or validated."""


# -----------------------------------------------------------------------------
# Sub-configuration Models
# -----------------------------------------------------------------------------


class GitSettings(BaseModel):
    """Git executable discovery and command settings."""

    executable_path: Path | None = Field(
        default=None,
        description="Explicit git executable. Skips installation discovery when set.",
    )
    minimum_git_version: str = Field(
        default=MINIMUM_GIT_VERSION, description="Oldest git accepted by install validation."
    )
    minimum_git_lfs_version: str = Field(
        default=MINIMUM_GIT_LFS_VERSION,
        description="Oldest git-lfs accepted by install validation.",
    )
    add_batch_size: int = Field(
        default=DEFAULT_ADD_BATCH_SIZE,
        ge=1,
        description="Maximum number of paths passed to a single git add/reset invocation.",
    )
    default_remote: str = Field(
        default="origin", description="Remote used when the current branch tracks none."
    )
    user_cache_path: Path = Field(
        default_factory=lambda: Path.home() / ".cache" / "gitchain",
        description="Directory searched for a portable git distribution on Windows.",
    )

    @field_validator("minimum_git_version", "minimum_git_lfs_version")
    @classmethod
    def ensure_version(cls, v: str) -> str:
        """Reject minimum versions that cannot be compared."""
        match Version.parse(v):
            case Err(err):
                raise ValueError(err.message)
            case Ok(_):
                return v

    @property
    def minimum_git(self) -> Version:
        return Version.parse(self.minimum_git_version).unwrap()

    @property
    def minimum_git_lfs(self) -> Version:
        return Version.parse(self.minimum_git_lfs_version).unwrap()


@dataclass
class ConfigLoadResult:
    path: Path
    file_loaded: bool
    env_overrides: set[str]
    error: str | None = None


class AppConfig(BaseSettings):
    """Application-wide configuration with nested sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="GITCHAIN_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    git: GitSettings = Field(default_factory=GitSettings)
    log_level: str = Field(default="INFO", description="Log level for gitchain output.")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
    ]:
        # Ensure environment variables override config file entries.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)


def _resolve_config_path(config_path: Path | None, env_vars: Mapping[str, str]) -> Path:
    candidate = config_path or env_vars.get(CONFIG_ENV_VAR) or (Path.home() / ".gitchain.toml")
    return Path(candidate).expanduser()


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    raw = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    parser = json.loads if suffix == ".json" else tomllib.loads

    try:
        data = parser(raw)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Syntax error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config root in {path} must be a mapping.")

    return data


def _detect_env_overrides(env_vars: Mapping[str, str]) -> set[str]:
    """Detect which fields are overridden by environment variables.

    Nested fields use the delimiter, e.g. GITCHAIN_GIT__EXECUTABLE_PATH.
    """
    prefix = AppConfig.model_config.get("env_prefix", "")
    delimiter = AppConfig.model_config.get("env_nested_delimiter", "__")
    overrides: set[str] = set()

    for field in GitSettings.model_fields:
        env_key = f"{prefix}git{delimiter}{field}".upper()
        if env_key in env_vars:
            overrides.add(f"git.{field}")

    if f"{prefix}log_level".upper() in env_vars:
        overrides.add("log_level")

    return overrides


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[AppConfig, ConfigLoadResult]:
    """
    Load configuration with Safe Mode fallback.
    If the file is invalid, returns default config + error message.
    """
    env_vars: Mapping[str, str] = os.environ if env is None else {**os.environ, **env}
    resolved_path = _resolve_config_path(config_path, env_vars)
    env_overrides = _detect_env_overrides(env_vars)

    error: str | None = None
    file_loaded = False
    file_data: dict[str, Any] = {}

    try:
        file_data = _read_config_file(resolved_path)
        file_loaded = resolved_path.exists()
    except ConfigError as exc:
        error = str(exc)

    context_manager = (
        patch.dict(os.environ, env_vars, clear=False) if env is not None else nullcontext()
    )

    try:
        with context_manager:
            config = AppConfig(**file_data)
    except ValidationError as exc:
        error = str(exc)
        config = AppConfig()

    load_result = ConfigLoadResult(
        path=resolved_path,
        file_loaded=file_loaded,
        env_overrides=env_overrides,
        error=error,
    )

    return config, load_result
