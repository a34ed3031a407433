"""Configuration models for diff policy and patch application.

Settings live in ``diffguard.yaml`` at the repository root (or any file passed
explicitly)::

    policy:
      allowed_path_prefixes: [src/]
      blocked_file_names: [package.json, yarn.lock]
      max_lines: 3000
    apply:
      fuzz: 2

``DIFFGUARD_MAX_LINES`` and ``DIFFGUARD_FUZZ`` override the file when set to a
positive (or, for fuzz, non-negative) integer.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, FrozenSet, Mapping, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

DEFAULT_CONFIG_NAME = "diffguard.yaml"
DEFAULT_ALLOWED_PREFIXES: FrozenSet[str] = frozenset({"src/"})
DEFAULT_BLOCKED_FILE_NAMES: FrozenSet[str] = frozenset(
    {"package.json", "package-lock.json", "pnpm-lock.yaml", "yarn.lock"}
)
DEFAULT_TEST_PATH_MARKERS: Tuple[str, ...] = ("__tests__", ".test.", ".spec.")
DEFAULT_MAX_LINES = 3000
DEFAULT_FUZZ = 2


class ConfigError(RuntimeError):
    """Raised when a configuration file cannot be read or validated."""


class SettingsModel(BaseModel):
    """Base model: immutable, and unknown keys are an error."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class DiffPolicy(SettingsModel):
    """Safety policy enforced by the diff validator."""

    allowed_path_prefixes: FrozenSet[str] = DEFAULT_ALLOWED_PREFIXES
    blocked_file_names: FrozenSet[str] = DEFAULT_BLOCKED_FILE_NAMES
    test_path_markers: Tuple[str, ...] = DEFAULT_TEST_PATH_MARKERS
    max_lines: int = Field(default=DEFAULT_MAX_LINES, gt=0)
    reject_duplicate_targets: bool = True


class ApplySettings(SettingsModel):
    """Knobs for the patch applier's strategies and scratch files."""

    fuzz: int = Field(default=DEFAULT_FUZZ, ge=0)
    temp_dir: Path | None = None


class DiffGuardConfig(SettingsModel):
    """Top-level configuration bundle."""

    policy: DiffPolicy = Field(default_factory=DiffPolicy)
    apply: ApplySettings = Field(default_factory=ApplySettings)


def _read_yaml(candidate: Path) -> Mapping[str, Any]:
    """Load a YAML mapping; a missing file is an empty mapping."""
    try:
        with candidate.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {candidate}: {error}") from error
    if not isinstance(loaded, Mapping):
        raise ConfigError(f"Configuration must be a mapping at the top level: {candidate}")
    return loaded


def _section(data: Mapping[str, Any], key: str, source: Path) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Config section '{key}' must be a mapping in {source}")
    return dict(value)


def _env_int(env: Mapping[str, str], key: str, *, minimum: int) -> int | None:
    raw = env.get(key)
    if raw is None:
        return None
    try:
        parsed = int(str(raw).strip())
    except ValueError:
        return None
    return parsed if parsed >= minimum else None


def _resolve_config_path(repo_root: Path, config_path: Path | str | None) -> Path:
    if config_path is None:
        return repo_root / DEFAULT_CONFIG_NAME
    candidate = Path(config_path)
    if not candidate.is_absolute():
        candidate = (repo_root / candidate).resolve()
    return candidate


def load_config(
    repo_root: Path | str = ".",
    config_path: Path | str | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> DiffGuardConfig:
    """Build a :class:`DiffGuardConfig` from YAML plus environment overrides."""
    env_mapping = os.environ if env is None else env
    candidate = _resolve_config_path(Path(repo_root).resolve(), config_path)
    data = dict(_read_yaml(candidate))

    policy_section = _section(data, "policy", candidate)
    apply_section = _section(data, "apply", candidate)

    max_lines = _env_int(env_mapping, "DIFFGUARD_MAX_LINES", minimum=1)
    if max_lines is not None:
        policy_section["max_lines"] = max_lines
    fuzz = _env_int(env_mapping, "DIFFGUARD_FUZZ", minimum=0)
    if fuzz is not None:
        apply_section["fuzz"] = fuzz

    data["policy"] = policy_section
    data["apply"] = apply_section
    try:
        return DiffGuardConfig.model_validate(data)
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration in {candidate}: {error}") from error


__all__ = [
    "ApplySettings",
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DiffGuardConfig",
    "DiffPolicy",
    "load_config",
]
