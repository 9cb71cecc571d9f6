"""
Configuration resolution and environment variable substitution.
"""

import os
import re
from typing import Any

# ${VAR} or ${VAR:-fallback}
ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def resolve_config(config_data: dict[str, Any], env: str = "dev") -> dict[str, Any]:
    """
    Resolve ${VAR_NAME} and {env} placeholders throughout a config tree.

    ``${VAR:-fallback}`` uses the fallback when VAR is unset or empty. A bare
    ``${VAR}`` that is unset stays verbatim, so a missing token is visible in
    error messages rather than silently empty.
    """
    return _resolve_value(config_data, env)


def _substitute(match: re.Match) -> str:
    name, fallback = match.group(1), match.group(2)
    value = os.environ.get(name)
    if value:
        return value
    if fallback is not None:
        return fallback
    return match.group(0) if value is None else value


def _resolve_value(value: Any, env: str) -> Any:
    if isinstance(value, dict):
        return {k: _resolve_value(v, env) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_value(item, env) for item in value]
    if isinstance(value, str):
        return ENV_PATTERN.sub(_substitute, value).replace("{env}", env)
    return value
