# pyright: reportAny=false, reportExplicitAny=false
"""Pipeline loading: file, defaults, overrides, expansion, validation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from vepctl.exceptions import ConfigValidationError

from ._defaults import DEFAULT_CONFIG, ENV_OVERRIDE_SECTIONS
from ._loader import (
    deep_merge,
    expand_variables,
    parse_env_vars,
    read_toml_file,
    resolve_variables,
)
from ._models import PipelineConfig
from ._validation import (
    ValidationIssue,
    raise_if_validation_errors,
    validate_pipeline,
)

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path


def resolve_pipeline_data(
    data: dict[str, Any],
    *,
    environ: Mapping[str, str] | None = None,
    overrides: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Apply defaults, overrides and placeholder expansion to raw pipeline data.

    Precedence, lowest to highest: built-in defaults, the pipeline file,
    VEPCTL_<TABLE>__<KEY> environment variables, then overrides.

    Args:
        data: Parsed pipeline file.
        environ: Environment to read; the process environment if None.
        overrides: Values given on the command line.

    Returns:
        The merged, expanded pipeline dictionary, not yet validated.

    Raises:
        ConfigValidationError: If [variables] is not a table or a placeholder
            cannot be resolved.
    """
    merged = deep_merge(DEFAULT_CONFIG, data)

    env_values = {
        section: values
        for section, values in parse_env_vars("VEPCTL_", environ).items()
        if section in ENV_OVERRIDE_SECTIONS
    }
    merged = deep_merge(merged, env_values)
    if overrides:
        merged = deep_merge(merged, overrides)

    declared = merged.get("variables")
    if not isinstance(declared, dict):
        msg = "[variables] must be a table"
        raise ConfigValidationError(
            msg, key="variables", value=declared, expected="a table of strings"
        )
    variables = resolve_variables(declared, environ)

    resolved: dict[str, Any] = {"variables": variables}
    for key, value in merged.items():
        if key != "variables":
            resolved[key] = expand_variables(value, variables, environ, key=key)
    return resolved


def check_pipeline(
    path: Path,
    *,
    environ: Mapping[str, str] | None = None,
) -> list[ValidationIssue]:
    """Collect every validation issue of a pipeline file.

    Raises:
        ConfigLoadError: If the file cannot be read or parsed.
        ConfigValidationError: If a placeholder cannot be resolved.
    """
    data = resolve_pipeline_data(read_toml_file(path), environ=environ)
    return validate_pipeline(data)


def load_pipeline(
    path: Path,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: dict[str, Any] | None = None,
) -> PipelineConfig:
    """Load and validate a pipeline file.

    Args:
        path: Path to the TOML pipeline file.
        environ: Environment to read; the process environment if None.
        overrides: Values given on the command line, nested by table.

    Returns:
        The validated pipeline.

    Raises:
        ConfigLoadError: If the file cannot be read or parsed.
        ConfigValidationError: If the pipeline is invalid.
    """
    data = resolve_pipeline_data(
        read_toml_file(path), environ=environ, overrides=overrides
    )
    raise_if_validation_errors(validate_pipeline(data), source=str(path))
    return PipelineConfig.model_validate(data)
