import pytest

from vepctl.config import (
    ValidationIssue,
    raise_if_validation_errors,
    validate_pipeline,
)
from vepctl.exceptions import ConfigValidationError


class TestValidatePipeline:
    def test_valid_data(self) -> None:
        data = {
            "services": [
                {"id": "broker", "kind": "process", "command": ["vep-broker"]},
            ]
        }

        assert validate_pipeline(data) == []

    def test_reports_dotted_key(self) -> None:
        issues = validate_pipeline({"services": [{"id": "broker", "kind": "vm"}]})

        assert any(issue.key == "services.0.kind" for issue in issues)
        assert all(issue.severity == "error" for issue in issues)

    def test_reports_pattern_as_expected(self) -> None:
        issues = validate_pipeline(
            {"services": [{"id": "bad id", "kind": "process", "command": ["x"]}]}
        )

        assert issues[0].key == "services.0.id"
        assert issues[0].expected is not None
        assert issues[0].expected.startswith("pattern:")


class TestRaiseIfValidationErrors:
    def test_no_errors(self) -> None:
        raise_if_validation_errors([])

    def test_warnings_do_not_raise(self) -> None:
        warning = ValidationIssue(
            key="services", message="empty", expected=None, actual=[], severity="warning"
        )

        raise_if_validation_errors([warning])

    def test_raises_first_error(self) -> None:
        issues = [
            ValidationIssue(
                key="supervisor.grace_period",
                message="must be >= 0",
                expected=None,
                actual=-1,
            ),
            ValidationIssue(key="logging.level", message="bad", expected=None, actual=1),
        ]

        with pytest.raises(ConfigValidationError) as exc_info:
            raise_if_validation_errors(issues, source="pipeline.toml")

        assert exc_info.value.key == "supervisor.grace_period"
        assert exc_info.value.expected == "must be >= 0"
        assert exc_info.value.source == "pipeline.toml"
