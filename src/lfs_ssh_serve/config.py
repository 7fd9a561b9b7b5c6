"""Server configuration loading.

Configuration is a small YAML file. The first one found wins:

1. the ``--config`` path given on the command line
2. ``$LFS_SSH_SERVE_CONFIG``
3. ``<user config dir>/lfs-ssh-serve/config.yaml``
4. ``<site config dir>/lfs-ssh-serve/config.yaml``

``LFS_SSH_SERVE_BASE_PATH``, ``LFS_SSH_SERVE_LOG_FILE`` and
``LFS_SSH_SERVE_DEBUG_LOG`` override whatever the file says.
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import platformdirs
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .constants import APP_NAME, CONFIG_ENV_VAR, CONFIG_FILE, DEFAULT_CHUNK_SIZE, ENV_PREFIX
from .errors import ConfigError, InvalidRepoPathError
from .utils import normalize_repo_path


class ServeConfig(BaseModel):
    """Server configuration (YAML keys use the dashed spelling)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    base_path: Optional[Path] = Field(default=None, alias="base-path")
    delta_cache_path: Optional[Path] = Field(default=None, alias="delta-cache-path")
    allow_absolute_paths: bool = Field(default=False, alias="allow-absolute-paths")
    log_file: Optional[Path] = Field(default=None, alias="log-file")
    debug_log: bool = Field(default=False, alias="debug-log")
    verify_content: bool = Field(default=True, alias="verify-content")
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, alias="chunk-size", gt=0)


_ENV_OVERRIDES = {
    "BASE_PATH": "base-path",
    "LOG_FILE": "log-file",
    "DEBUG_LOG": "debug-log",
}


def _candidate_files() -> list:
    return [
        Path(platformdirs.user_config_dir(APP_NAME)) / CONFIG_FILE,
        Path(platformdirs.site_config_dir(APP_NAME)) / CONFIG_FILE,
    ]


def find_config_file(explicit: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> Optional[Path]:
    """Locate the configuration file to load, if any.

    An explicit path or one named by the environment must exist; the
    platform locations are only used when present.

    Raises:
        ConfigError: If an explicitly named file does not exist
    """
    env = os.environ if environ is None else environ

    named = explicit or (Path(env[CONFIG_ENV_VAR]) if env.get(CONFIG_ENV_VAR) else None)
    if named is not None:
        if not named.is_file():
            raise ConfigError(f"Configuration file not found: {named}")
        return named

    for candidate in _candidate_files():
        if candidate.is_file():
            return candidate
    return None


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Unable to read configuration {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration {path} must be a mapping, got {type(data).__name__}")
    return data


def load_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> ServeConfig:
    """Load configuration from file and environment.

    Args:
        path: Explicit configuration file (e.g. from --config)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated ServeConfig; all defaults when no file exists

    Raises:
        ConfigError: If the file is unreadable, malformed or has invalid values
    """
    env = os.environ if environ is None else environ

    cfg_path = find_config_file(path, env)
    data = _read_yaml(cfg_path) if cfg_path else {}

    for suffix, key in _ENV_OVERRIDES.items():
        value = env.get(ENV_PREFIX + suffix)
        if value:
            data[key] = value

    try:
        return ServeConfig.model_validate(data)
    except ValidationError as e:
        source = cfg_path or "environment"
        raise ConfigError(f"Invalid configuration in {source}: {e}") from e


def resolve_repo_scope(raw: str, config: ServeConfig) -> str:
    """Validate the repository path argument and return its normalised form.

    Raises:
        InvalidRepoPathError: If the path is empty, absolute while
            ``allow_absolute_paths`` is off, or climbs out of base_path
    """
    if not raw or not raw.strip():
        raise InvalidRepoPathError(repr(raw), "path must not be empty")

    scope = normalize_repo_path(raw)
    if os.path.isabs(scope):
        if not config.allow_absolute_paths:
            raise InvalidRepoPathError(scope, "absolute paths are not allowed by this server")
        return scope

    if scope == os.pardir or scope.startswith(os.pardir + os.sep):
        raise InvalidRepoPathError(scope, "path must stay inside base-path")
    return scope
