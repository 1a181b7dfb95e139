# pyright: reportAny=false, reportUnknownVariableType=false, reportUnknownArgumentType=false
"""Pipeline file reading, merging and placeholder expansion."""

from __future__ import annotations

import json
import os
import re
import tomllib
from typing import TYPE_CHECKING, Any

from vepctl.exceptions import ConfigLoadError, ConfigValidationError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

# ${NAME} or ${NAME:-default}
_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def read_toml_file(path: Path) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Read and parse a TOML pipeline file.

    Args:
        path: Path to the TOML file.

    Returns:
        Parsed TOML content as dictionary.

    Raises:
        ConfigLoadError: If the file is missing, unreadable or not valid TOML.
    """
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        msg = f"Failed to parse TOML file: {e}"
        raise ConfigLoadError(
            msg,
            path=path,
            line=getattr(e, "lineno", None),
            column=getattr(e, "colno", None),
        ) from e
    except FileNotFoundError as e:
        msg = f"Pipeline file not found: {path}"
        raise ConfigLoadError(msg, path=path) from e
    except OSError as e:
        msg = f"Failed to read pipeline file: {e}"
        raise ConfigLoadError(msg, path=path) from e


def deep_merge(
    base: dict[str, Any],  # pyright: ignore[reportExplicitAny]
    override: dict[str, Any],  # pyright: ignore[reportExplicitAny]
) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Deep merge two configuration dictionaries into a new one.

    Tables are merged recursively; arrays (including ``[[services]]``) and
    scalars from override replace those of base. Neither input is modified.

    Args:
        base: Lower-precedence configuration.
        override: Higher-precedence configuration.

    Returns:
        The merged configuration.
    """
    result: dict[str, Any] = {  # pyright: ignore[reportExplicitAny]
        key: copy_value(value) for key, value in base.items()
    }
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = copy_value(value)
    return result


def copy_value(value: Any) -> Any:  # pyright: ignore[reportExplicitAny]
    """Return a copy of value that shares no dicts or lists with it."""
    if isinstance(value, dict):
        return {k: copy_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [copy_value(item) for item in value]
    return value


def parse_env_vars(
    prefix: str = "VEPCTL_",
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Parse environment variables into a nested config dictionary.

    Args:
        prefix: Environment variable prefix.
        environ: Variables to read; the process environment if None.

    Returns:
        Dictionary of parsed values with nested structure.

    Environment variable naming:
        - Add prefix (VEPCTL_)
        - Convert to uppercase
        - Replace dots with double underscores
        - Example: supervisor.grace_period -> VEPCTL_SUPERVISOR__GRACE_PERIOD
    """
    environ = os.environ if environ is None else environ
    result: dict[str, Any] = {}  # pyright: ignore[reportExplicitAny]

    for key, value in environ.items():
        if not key.startswith(prefix):
            continue
        config_key = key[len(prefix) :]
        if not config_key:
            continue
        set_nested_key(
            result,
            config_key.replace("__", ".").lower(),
            parse_string_value(value),
        )

    return result


def parse_string_value(value: str) -> Any:  # pyright: ignore[reportExplicitAny]
    """Parse a string value with type inference.

    Booleans (true/false), integers, floats (with a decimal point) and JSON
    arrays or objects are converted; anything else stays a string.

    Examples:
        >>> parse_string_value("true")
        True
        >>> parse_string_value("5")
        5
        >>> parse_string_value("2.5")
        2.5
        >>> parse_string_value("podman")
        'podman'
    """
    lower_value = value.lower()
    if lower_value in ("true", "false"):
        return lower_value == "true"

    try:
        return int(value)
    except ValueError:
        pass

    if "." in value:
        try:
            return float(value)
        except ValueError:
            pass

    if (value.startswith("[") and value.endswith("]")) or (
        value.startswith("{") and value.endswith("}")
    ):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass

    return value


def set_nested_key(
    d: dict[str, Any],  # pyright: ignore[reportExplicitAny]
    key_path: str,
    value: Any,  # pyright: ignore[reportExplicitAny]
) -> None:
    """Set a value at a dotted key path, creating tables as needed.

    Example:
        >>> d = {}
        >>> set_nested_key(d, "supervisor.grace_period", 5)
        >>> d
        {'supervisor': {'grace_period': 5}}
    """
    parts = key_path.split(".")
    current = d
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def resolve_variables(
    declared: Mapping[str, Any],  # pyright: ignore[reportExplicitAny]
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Apply environment overrides to the ``[variables]`` table.

    Args:
        declared: Values from the pipeline file.
        environ: Variables to read; the process environment if None.

    Returns:
        Every declared variable as a string, replaced by the environment
        variable of the same name when one is set.
    """
    environ = os.environ if environ is None else environ
    return {
        name: environ.get(name, _stringify(value)) for name, value in declared.items()
    }


def expand_variables(
    value: Any,  # pyright: ignore[reportExplicitAny]
    variables: Mapping[str, str],
    environ: Mapping[str, str] | None = None,
    *,
    key: str = "",
) -> Any:  # pyright: ignore[reportExplicitAny]
    """Expand ``${NAME}`` and ``${NAME:-default}`` placeholders.

    Strings nested anywhere in dicts and lists are expanded. A name is
    looked up in variables first, then in the environment, then the
    default is used.

    Args:
        value: Value to expand.
        variables: Resolved ``[variables]`` table.
        environ: Fallback variables; the process environment if None.
        key: Dotted path of value, used in error messages.

    Returns:
        A copy of value with every placeholder replaced.

    Raises:
        ConfigValidationError: If a placeholder has no value and no default.
    """
    environ = os.environ if environ is None else environ

    if isinstance(value, dict):
        return {
            k: expand_variables(v, variables, environ, key=_join(key, k))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [
            expand_variables(item, variables, environ, key=f"{key}[{i}]")
            for i, item in enumerate(value)
        ]
    if not isinstance(value, str):
        return value

    def replace(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        if name in variables:
            return variables[name]
        if name in environ:
            return environ[name]
        if default is not None:
            return default
        msg = f"Undefined variable '{name}' in '{key}'"
        raise ConfigValidationError(
            msg,
            key=key,
            value=value,
            expected=f"a value for ${{{name}}} in [variables] or the environment",
        )

    return _PLACEHOLDER.sub(replace, value)


def _join(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else key


def _stringify(value: Any) -> str:  # pyright: ignore[reportExplicitAny]
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
