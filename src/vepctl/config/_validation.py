# pyright: reportAny=false, reportExplicitAny=false, reportUnknownArgumentType=false, reportUnknownMemberType=false, reportUnknownVariableType=false
"""Pipeline validation using the Pydantic models.

Validation collects every problem as a ValidationIssue so `vepctl check`
can report them all; loading raises on the first one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from pydantic import ValidationError

from vepctl.exceptions import ConfigValidationError

from ._models import PipelineConfig

if TYPE_CHECKING:
    from pydantic_core import ErrorDetails


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    """Represents a pipeline validation issue.

    Attributes:
        key: Dotted path to the offending key (e.g., "services.0.image").
        message: Human-readable description of the issue.
        expected: Description of the expected value, if available.
        actual: The value that caused the issue.
        severity: Whether this is an error or warning.
    """

    key: str
    message: str
    expected: str | None
    actual: Any
    severity: Literal["error", "warning"] = "error"


def _pydantic_error_to_issue(error: ErrorDetails) -> ValidationIssue:
    key = ".".join(str(part) for part in error.get("loc", ()))
    message = str(error.get("msg", "Validation error"))

    ctx = error.get("ctx")
    expected: str | None = None
    if ctx is not None:
        if "expected" in ctx:
            expected = str(ctx["expected"])
        elif "pattern" in ctx:
            expected = f"pattern: {ctx['pattern']}"

    return ValidationIssue(
        key=key,
        message=message,
        expected=expected,
        actual=error.get("input"),
    )


def validate_pipeline(data: dict[str, Any]) -> list[ValidationIssue]:
    """Validate a merged pipeline dictionary.

    Args:
        data: Pipeline data after defaults, overrides and expansion.

    Returns:
        List of ValidationIssue objects. Empty list indicates a valid pipeline.
    """
    try:
        _ = PipelineConfig.model_validate(data)
    except ValidationError as e:
        return [_pydantic_error_to_issue(err) for err in e.errors()]
    else:
        return []


def raise_if_validation_errors(
    issues: list[ValidationIssue],
    source: str | None = None,
) -> None:
    """Raise ConfigValidationError for the first error in issues.

    Args:
        issues: Issues returned by validate_pipeline().
        source: Pipeline file the issues were found in.

    Raises:
        ConfigValidationError: If any issue has severity="error".
    """
    errors = [i for i in issues if i.severity == "error"]
    if errors:
        issue = errors[0]
        msg = f"Invalid pipeline value for '{issue.key}': {issue.message}"
        raise ConfigValidationError(
            msg,
            key=issue.key,
            value=issue.actual,
            expected=issue.expected or issue.message,
            source=source,
        )
