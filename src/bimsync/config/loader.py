"""
Configuration file loading.

Loads config.yaml plus an optional config.{env}.yaml overlay.
"""

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

from bimsync.config.resolver import resolve_config


class Config:
    """bimsync configuration container with dict-like access."""

    def __init__(self, data: dict[str, Any]):
        self.data = data
        # Convenience properties for common config sections
        self.sources = data.get("sources", {})
        self.translation = data.get("translation", {})
        self.runtime = data.get("runtime", {})

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        keys = key.split(".")
        value = self.data
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value

    def __getitem__(self, key: str) -> Any:
        """Dict-like access: config['key'] or config['nested']['key']."""
        if isinstance(key, str) and "." in key:
            return self.get(key)
        if key in self.data:
            value = self.data[key]
            # Return nested dicts as Config objects for chaining
            if isinstance(value, dict):
                return Config(value)
            return value
        raise KeyError(f"Config key '{key}' not found")

    def __contains__(self, key: str) -> bool:
        """Check if key exists in config."""
        if isinstance(key, str) and "." in key:
            keys = key.split(".")
            value = self.data
            for k in keys:
                if not isinstance(value, dict) or k not in value:
                    return False
                value = value[k]
            return True
        return key in self.data

    def __iter__(self) -> "Iterator[str]":
        """Iterate over top-level keys."""
        return iter(self.data)

    def keys(self):
        return self.data.keys()

    def items(self):
        return self.data.items()

    def validate(self) -> None:
        """Validate configuration structure."""
        errors = []

        if not isinstance(self.data, dict):
            errors.append(f"Configuration must be a dictionary/mapping, got {type(self.data).__name__}")
            raise ValueError("\n".join(errors))

        for section in ("sources", "translation", "runtime", "subscriptions", "discovery", "logging"):
            value = self.data.get(section)
            if value is not None and not isinstance(value, dict):
                errors.append(f"Configuration '{section}' must be a dictionary, got {type(value).__name__}")

        sources = self.data.get("sources")
        if isinstance(sources, dict):
            unknown = sorted(set(sources) - {"acc", "collab"})
            if unknown:
                errors.append(f"Unknown source kind(s) in 'sources': {', '.join(unknown)} (expected acc, collab)")

        if errors:
            raise ValueError("\n".join(errors))


def load_config(project_path: Path | None = None, env: str | None = None) -> Config:
    """
    Load bimsync configuration.

    Loads config.yaml and config.{env}.yaml, merged with environment variables.
    A missing config.yaml is not an error: every setting has a default.

    Args:
        project_path: Path to project root (default: current directory)
        env: Environment name (dev, staging, prod)

    Returns:
        Config instance with merged configuration
    """
    if project_path is None:
        project_path = Path.cwd()

    config_data: dict[str, Any] = {}
    base_config_path = project_path / "config.yaml"
    if base_config_path.exists():
        if not base_config_path.is_file():
            raise FileNotFoundError(f"Configuration path is not a file: {base_config_path}")
        config_data = _read_yaml(base_config_path)

    if env:
        env_config_path = project_path / f"config.{env}.yaml"
        if env_config_path.exists():
            _merge_dict(config_data, _read_yaml(env_config_path))

    env_name = env or "dev"
    config_data = resolve_config(config_data, env_name)

    return Config(config_data)


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            error_msg = str(e)
            if hasattr(e, "problem_mark"):
                mark = e.problem_mark
                raise ValueError(
                    f"Error parsing {path.name} at line {mark.line + 1}, column {mark.column + 1}:\n"
                    f"  {error_msg}\n"
                    f"  File: {path}\n"
                    f"  Suggestion: Check YAML syntax, ensure proper indentation and quotes"
                ) from e
            raise ValueError(f"Error parsing {path.name}: {error_msg}\n" f"  File: {path}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Configuration must be a dictionary/mapping, got {type(data).__name__}\n  File: {path}")
    return data


def _merge_dict(base: dict, override: dict):
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_dict(base[key], value)
        else:
            base[key] = value
