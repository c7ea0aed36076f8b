"""Configuration loader for iteration-report.

Reads YAML configuration from ~/.config/iteration-report/config.yaml (or a
custom path). Environment variables override file values; command-line flags
override both (applied in __main__).

Requires PyYAML (pip install pyyaml).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

import yaml


DEFAULT_CONFIG_PATH = os.path.expanduser("~/.config/iteration-report/config.yaml")

# Environment variable → Config field
_ENV_OVERRIDES = {
    "GITLAB_HOST": "gitlab_host",
    "GITLAB_PROJECT_ID": "project_id",
    "GITLAB_GROUP_ID": "group_id",
}


@dataclass
class Config:
    """Top-level application configuration."""

    gitlab_host: str = ""
    project_id: str = ""
    group_id: str = ""
    model: str = ""
    summary_prompt: str = ""


def _expand_path(path: str) -> str:
    """Expand ~ and environment variables in a path."""
    return os.path.expanduser(os.path.expandvars(path))


def _as_text(value: object) -> str:
    """Normalize a scalar YAML value (ids are often written as numbers)."""
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def load_config(config_path: Optional[str] = None, environ: Optional[dict] = None) -> Config:
    """Load configuration from a YAML file plus environment overrides.

    Args:
        config_path: Path to the YAML config file. Defaults to
            ~/.config/iteration-report/config.yaml.
        environ: Environment mapping; ``os.environ`` when omitted.

    Returns:
        A Config instance. A missing or malformed file yields defaults
        (graceful degradation).
    """
    path = _expand_path(config_path) if config_path else DEFAULT_CONFIG_PATH
    environ = os.environ if environ is None else environ

    data: dict = {}
    if os.path.isfile(path):
        with open(path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
        if isinstance(loaded, dict):
            data = loaded

    cfg = Config(
        gitlab_host=_as_text(data.get("gitlab_host")),
        project_id=_as_text(data.get("project_id")),
        group_id=_as_text(data.get("group_id")),
        model=_as_text(data.get("model")),
        summary_prompt=data.get("summary_prompt") if isinstance(data.get("summary_prompt"), str) else "",
    )

    for env_name, attr in _ENV_OVERRIDES.items():
        value = environ.get(env_name, "")
        if value:
            setattr(cfg, attr, value.strip())

    return cfg
