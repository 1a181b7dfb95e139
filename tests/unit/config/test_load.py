from pathlib import Path

import pytest

from vepctl.config import (
    LogFormat,
    LogLevel,
    check_pipeline,
    load_pipeline,
    resolve_pipeline_data,
)
from vepctl.exceptions import ConfigLoadError, ConfigValidationError
from vepctl.supervisor import (
    ContainerAction,
    ProbeKind,
    ProcessAction,
    ServiceKind,
)


class TestLoadPipeline:
    def test_loads_services_in_source_order(self, pipeline_file: Path) -> None:
        config = load_pipeline(pipeline_file, environ={})

        assert [s.id for s in config.services] == ["broker", "databroker", "exporter"]
        assert config.supervisor.grace_period == 3.0
        assert config.supervisor.probe_timeout == 10.0
        assert config.logging.level == LogLevel.INFO

    def test_expands_variables(self, pipeline_file: Path) -> None:
        config = load_pipeline(pipeline_file, environ={})

        assert config.services[0].command == ("vep-broker", "--port", "5556")

    def test_environment_overrides_variable(self, pipeline_file: Path) -> None:
        config = load_pipeline(pipeline_file, environ={"BROKER_PORT": "6000"})

        assert config.services[0].command[-1] == "6000"

    def test_environment_overrides_settings(self, pipeline_file: Path) -> None:
        environ = {
            "VEPCTL_SUPERVISOR__GRACE_PERIOD": "7.5",
            "VEPCTL_LOGGING__FORMAT": "json",
            "VEPCTL_SERVICES": "ignored",
        }

        config = load_pipeline(pipeline_file, environ=environ)

        assert config.supervisor.grace_period == 7.5
        assert config.logging.format == LogFormat.JSON
        assert len(config.services) == 3

    def test_overrides_win_over_environment(self, pipeline_file: Path) -> None:
        config = load_pipeline(
            pipeline_file,
            environ={"VEPCTL_SUPERVISOR__GRACE_PERIOD": "7.5"},
            overrides={"supervisor": {"grace_period": 1.0}},
        )

        assert config.run_settings().grace_period == 1.0

    def test_builds_graph(self, pipeline_file: Path) -> None:
        config = load_pipeline(pipeline_file, environ={})

        graph = config.to_graph(pipeline_file.parent)
        broker, databroker, exporter = graph.ordered()

        assert broker.kind == ServiceKind.PROCESS
        assert broker.probe is not None
        assert broker.probe.kind == ProbeKind.TCP
        assert broker.probe.port == 5556
        assert broker.claims_ports == (5556,)

        assert isinstance(databroker.action, ContainerAction)
        assert databroker.action.network == "host"
        assert databroker.action.args == ("--insecure",)

        assert isinstance(exporter.action, ProcessAction)
        assert exporter.action.cwd == pipeline_file.parent / "exporter"
        assert not exporter.required

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigLoadError):
            _ = load_pipeline(tmp_path / "missing.toml", environ={})

    def test_invalid_value_names_key_and_source(self, tmp_path: Path) -> None:
        path = tmp_path / "pipeline.toml"
        path.write_text('[supervisor]\ngrace_period = -1\n')

        with pytest.raises(ConfigValidationError) as exc_info:
            _ = load_pipeline(path, environ={})

        assert exc_info.value.key == "supervisor.grace_period"
        assert exc_info.value.source == str(path)


class TestCheckPipeline:
    def test_valid_pipeline_has_no_issues(self, pipeline_file: Path) -> None:
        assert check_pipeline(pipeline_file, environ={}) == []

    def test_collects_every_issue(self, tmp_path: Path) -> None:
        path = tmp_path / "pipeline.toml"
        path.write_text(
            """
[supervisor]
grace_period = "soon"
unknown = 1

[[services]]
id = "broker"
kind = "process"
"""
        )

        issues = check_pipeline(path, environ={})

        keys = {issue.key for issue in issues}
        assert "supervisor.grace_period" in keys
        assert "supervisor.unknown" in keys
        assert any(key.startswith("services.0") for key in keys)


class TestResolvePipelineData:
    def test_variables_must_be_a_table(self) -> None:
        with pytest.raises(ConfigValidationError, match="must be a table"):
            _ = resolve_pipeline_data({"variables": ["a"]}, environ={})

    def test_defaults_fill_missing_tables(self) -> None:
        data = resolve_pipeline_data({}, environ={})

        assert data["supervisor"]["grace_period"] == 2.0
        assert data["logging"] == {"level": "info", "format": "text", "file": ""}
        assert data["services"] == []
