"""Configuration loading and management for JobWarden."""

from __future__ import annotations

import os
import re
from pathlib import Path

import yaml
from loguru import logger

from jobwarden.errors import ConfigError
from jobwarden.models import JobWardenConfig

# Default paths
DEFAULT_CONFIG_DIR = Path.home() / ".jobwarden"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "jobwarden.yaml"
DEFAULT_DB_FILE = DEFAULT_CONFIG_DIR / "jobwarden.db"
DEFAULT_STORAGE_DIR = DEFAULT_CONFIG_DIR / "storage"
DEFAULT_LOGS_DIR = DEFAULT_CONFIG_DIR / "logs"

DEFAULT_CONFIG_YAML = """\
# JobWarden configuration

watchdog:
  # Hours a completed job is kept before it is archived
  jobs_expired_status_time: 24
  # Hours a job may stay scheduled or running before it is requeued
  jobs_timingout_time: 5
  # Milliseconds between sweeps
  interval: 60000
  max_concurrency: 16
  # Seconds to wait for an executor to answer a cancel request
  cancel_timeout: 10
  archive_retries: 2
  release_retries: 3
  retry_delay: 1
  # Seconds to wait for in-flight sweeps when shutting down
  shutdown_timeout: 30

database:
  path: ~/.jobwarden/jobwarden.db

storage:
  backend: local
  root: ~/.jobwarden/storage
  # backend: s3
  # bucket: my-jobs-bucket
  # region: eu-west-1
  # access_key_id: ${env:AWS_ACCESS_KEY_ID}
  # secret_access_key: ${env:AWS_SECRET_ACCESS_KEY}

daemon:
  log_level: INFO
"""


def ensure_config_dir() -> Path:
    """Ensure the config directory exists."""
    DEFAULT_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    DEFAULT_LOGS_DIR.mkdir(parents=True, exist_ok=True)
    return DEFAULT_CONFIG_DIR


def expand_env_vars(value: str) -> str:
    """Expand environment variables in a string.

    Supports:
    - ${env:VAR_NAME} - environment variable
    - $VAR_NAME or ${VAR_NAME} - standard env var expansion
    """
    def replace_env(match: re.Match[str]) -> str:
        return os.environ.get(match.group(1), "")

    value = re.sub(r"\$\{env:([^}]+)\}", replace_env, value)
    return os.path.expandvars(value)


def _expand_tree(data: object) -> object:
    """Expand env vars and ~ in every string of a loaded YAML tree."""
    if isinstance(data, dict):
        return {k: _expand_tree(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_expand_tree(v) for v in data]
    if isinstance(data, str):
        return os.path.expanduser(expand_env_vars(data))
    return data


def load_yaml_file(path: Path) -> dict:
    """Load a YAML file."""
    if not path.exists():
        return {}

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config file {path}: expected a mapping, got {type(data).__name__}")

    return data


def load_config(config_path: Path | None = None) -> JobWardenConfig:
    """Load the main JobWarden configuration."""
    path = config_path or DEFAULT_CONFIG_FILE

    if not path.exists():
        logger.info(f"Config file not found at {path}, using defaults")
        return JobWardenConfig()

    try:
        data = _expand_tree(load_yaml_file(path))
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    try:
        config = JobWardenConfig.model_validate(data)
        logger.debug(f"Loaded config from {path}")
        return config
    except Exception as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e


def create_default_config(config_path: Path | None = None) -> bool:
    """Write the default configuration file if none exists.

    Returns:
        True if a file was written
    """
    path = config_path or DEFAULT_CONFIG_FILE
    if path.exists():
        return False

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_YAML)
    logger.info(f"Created default config at {path}")
    return True
