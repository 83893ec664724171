"""Configuration document loading with environment variable substitution."""

import os
import re
from pathlib import Path
from typing import Any, cast

import yaml

_ENV_REFERENCE = re.compile(r"\$\{[^}]+\}")


class ConfigError(Exception):
    """Raise when configuration loading or validation fails."""


def load_document(path: Path) -> dict[str, Any]:
    """Read a YAML or JSON configuration document from disk.

    JSON documents are valid YAML, so both formats go through
    ``yaml.safe_load``.  An empty file yields an empty mapping.

    Args:
        path: Location of the configuration file.

    Returns:
        The parsed mapping with environment variables substituted.

    Raises:
        ConfigError: If the file cannot be read or parsed, the top level
            is not a mapping, or an environment reference cannot be resolved.

    """
    try:
        with path.open() as f:
            raw: Any = yaml.safe_load(f)
    except OSError as exc:
        msg = f"Cannot read config file {path}: {exc}"
        raise ConfigError(msg) from exc
    except yaml.YAMLError as exc:
        msg = f"Malformed config file {path}: {exc}"
        raise ConfigError(msg) from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        msg = f"Config file {path} must contain a mapping, got {type(raw).__name__}"
        raise ConfigError(msg)
    return cast("dict[str, Any]", substitute_env_vars(raw))


def substitute_env_vars(config: Any) -> Any:
    """Recursively substitute environment variables in config.

    Supports format: ${VAR_NAME:default_value} or ${VAR_NAME}

    Args:
        config: Configuration value (dict, list, or str).

    Returns:
        Configuration with environment variables substituted.

    Raises:
        ConfigError: If a referenced variable is unset and has no default.

    """
    if isinstance(config, dict):
        return {
            k: substitute_env_vars(v)
            for k, v in config.items()  # pyright: ignore[reportUnknownVariableType]
        }
    if isinstance(config, list):
        return [
            substitute_env_vars(item)
            for item in config  # pyright: ignore[reportUnknownVariableType]
        ]
    if isinstance(config, str) and config.startswith("${") and config.endswith("}"):
        var_expr = config[2:-1]
        if ":" in var_expr:
            var_name, default = var_expr.split(":", 1)
        else:
            var_name, default = var_expr, None

        value = os.getenv(var_name, default)
        if value is None:
            msg = f"Required environment variable ${{{var_name}}} is not set and has no default"
            raise ConfigError(msg)
        return value

    if isinstance(config, str) and _ENV_REFERENCE.search(config):
        msg = f"Unresolved environment variable reference in: {config}"
        raise ConfigError(msg)

    return config
