"""vepctl pipeline configuration.

This module provides loading and validation of TOML pipeline files and
their conversion into a ServiceGraph and RunSettings.

Example:
    >>> from pathlib import Path
    >>> from vepctl.config import load_pipeline
    >>> pipeline = load_pipeline(Path("pipeline.toml"))
    >>> graph = pipeline.to_graph(Path("."))
    >>> settings = pipeline.run_settings()
"""

from vepctl.exceptions import (
    ConfigError,
    ConfigLoadError,
    ConfigValidationError,
)

from ._defaults import DEFAULT_CONFIG
from ._load import check_pipeline, load_pipeline, resolve_pipeline_data
from ._loader import (
    deep_merge,
    expand_variables,
    parse_env_vars,
    parse_string_value,
    read_toml_file,
    resolve_variables,
    set_nested_key,
)
from ._models import (
    LogFormat,
    LoggingConfig,
    LogLevel,
    PipelineConfig,
    ProbeConfiguration,
    ServiceConfiguration,
    SupervisorConfiguration,
)
from ._validation import ValidationIssue, raise_if_validation_errors, validate_pipeline

__all__ = [
    "DEFAULT_CONFIG",
    "ConfigError",
    "ConfigLoadError",
    "ConfigValidationError",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "PipelineConfig",
    "ProbeConfiguration",
    "ServiceConfiguration",
    "SupervisorConfiguration",
    "ValidationIssue",
    "check_pipeline",
    "deep_merge",
    "expand_variables",
    "load_pipeline",
    "parse_env_vars",
    "parse_string_value",
    "raise_if_validation_errors",
    "read_toml_file",
    "resolve_pipeline_data",
    "resolve_variables",
    "set_nested_key",
    "validate_pipeline",
]
