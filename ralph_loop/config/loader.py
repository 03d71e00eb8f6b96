"""Layered configuration loading.

Precedence, lowest first: model defaults, the ``[loop]`` table of
``<cwd>/.ralph/config.toml``, ``RALPH_*`` environment variables, explicit
overrides (command-line options).
"""

from __future__ import annotations

import logging
import os
import shlex
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ralph_loop.config.config import LoopConfig
from ralph_loop.utils.exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".ralph"
CONFIG_FILE_NAME = "config.toml"
ENV_PREFIX = "RALPH_"

_ENV_FIELDS = (
    "prompt_file",
    "fix_plan_file",
    "log_dir",
    "status_file",
    "analysis_file",
    "circuit_state_file",
    "stop_file",
    "timeout_minutes",
    "sleep_seconds",
    "verbose",
    "agent_command",
    "prompt_flag",
    "trust_all_tools",
    "agent_name",
    "no_progress_threshold",
    "error_threshold",
    "max_test_loops",
    "max_done_signals",
)


def get_project_config_path(cwd: Path) -> Path:
    return cwd / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def _load_toml_config(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Invalid config file: {path}", config_file=str(path), cause=e) from e

    loop_table = data.get("loop", {})
    if not isinstance(loop_table, dict):
        raise ConfigError("[loop] must be a table", config_key="loop", config_file=str(path))
    return loop_table


def _load_env_config() -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name in _ENV_FIELDS:
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if raw is None:
            continue
        values[name] = shlex.split(raw) if name == "agent_command" else raw
    return values


def load_config(cwd: Path | None = None, **overrides: Any) -> LoopConfig:
    """Build the effective LoopConfig.

    Args:
        cwd: Project directory; defaults to the process working directory.
        **overrides: Highest-precedence values; None values are ignored.

    Raises:
        ConfigError: If a source is unreadable or a value fails validation.
    """
    project_dir = (cwd or Path.cwd()).resolve()
    config_path = get_project_config_path(project_dir)

    values: dict[str, Any] = {}
    values.update(_load_toml_config(config_path))
    values.update(_load_env_config())
    values.update({key: value for key, value in overrides.items() if value is not None})
    values["cwd"] = project_dir

    try:
        config = LoopConfig(**values)
    except ValidationError as e:
        first = e.errors()[0]
        key = ".".join(str(part) for part in first.get("loc", ()))
        raise ConfigError(
            f"Invalid configuration value for {key}: {first.get('msg')}",
            config_key=key or None,
            config_file=str(config_path) if config_path.is_file() else None,
            cause=e,
        ) from e

    logger.debug(f"Loaded configuration for {project_dir}")
    return config
