from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field

from flatty.config import DEFAULT_OUTPUT_DIR, DEFAULT_SEPARATOR, DEFAULT_TOKEN_BUDGET, GroupBy
from flatty.exceptions import ConfigurationError

ENV_FILE = find_dotenv(usecwd=True)

ENV_PREFIX = "FLATTY_"
ENV_KEYS = ("output_dir", "tokens", "group_by", "separator", "log_file")
PATTERN_KEYS = ("include", "exclude")


class Settings(BaseModel):
    """Configuration settings for a flatty run."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    root: Path = Field(default_factory=Path.cwd, description="Directory to flatten.")
    output_dir: Path = Field(default=DEFAULT_OUTPUT_DIR, description="Output directory.")
    tokens: int = Field(default=DEFAULT_TOKEN_BUDGET, description="Token budget per document.")
    group_by: GroupBy = Field(default=GroupBy.DIRECTORY, description="Grouping mode.")
    include: list[str] = Field(default_factory=list, description="Include glob (repeatable).")
    exclude: list[str] = Field(default_factory=list, description="Exclude glob (repeatable).")
    no_default_excludes: bool = Field(
        default=False,
        description="Do not apply the built-in exclusion patterns.",
    )
    separator: str = Field(default=DEFAULT_SEPARATOR, description="File separator line.")
    project_name: str = Field(default="", description="Project name (defaults to the root name).")
    verbose: bool = Field(default=False, description="Log every processed file.")
    log_file: str = Field(default="", description="Log file path.")

    @property
    def resolved_root(self) -> Path:
        return self.root.expanduser().resolve()

    @property
    def resolved_output_dir(self) -> Path:
        return self.output_dir.expanduser().resolve()

    @property
    def project(self) -> str:
        return self.project_name or self.resolved_root.name or "project"


def env_defaults(env_file: str | None = None) -> dict[str, str]:
    """Collect `FLATTY_*` defaults from the `.env` file and the process environment.

    Process variables win over the `.env` file.

    Args:
        env_file: path of the dotenv file; defaults to the one found from the cwd.

    Returns:
        dict[str, str]: setting name to raw value, for the keys in `ENV_KEYS`.
    """
    path = ENV_FILE if env_file is None else env_file
    values: dict[str, str | None] = dict(dotenv_values(path)) if path else {}
    values.update(os.environ)
    out: dict[str, str] = {}
    for key in ENV_KEYS:
        raw = values.get(ENV_PREFIX + key.upper())
        if raw:
            out[key] = raw
    return out


def load_config_file(path: Path) -> dict[str, Any]:
    """Load settings overrides from a YAML mapping.

    Keys use the `Settings` field names; dashes are accepted in place of underscores.

    Args:
        path (Path): the YAML file to read

    Raises:
        ConfigurationError: if the file is unreadable, is not a mapping, has unknown keys
            or holds patterns that are neither a string nor a list of strings.

    Returns:
        dict[str, Any]: the overrides found in the file
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(reason=f"cannot read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(reason=f"config file {path} must contain a mapping")

    out = {str(k).replace("-", "_"): v for k, v in data.items()}
    unknown = sorted(set(out) - set(Settings.model_fields))
    if unknown:
        raise ConfigurationError(reason=f"unknown keys in {path}: {', '.join(unknown)}")
    for key in PATTERN_KEYS:
        value = out.get(key)
        if value is None or isinstance(value, str):
            continue
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigurationError(reason=f"{key} in {path} must be a pattern or a list of patterns")
    return out
