from collections.abc import Callable
from pathlib import Path

import pytest

from vepctl.cli._commands._run import exit_code_for
from vepctl.supervisor import RunResult, ServiceOutcome

CLI = Callable[..., int]

FAST_SUPERVISOR = """
[supervisor]
grace_period = 0.5
monitor_interval = 0.05
probe_interval = 0.05
max_port_wait = 1
clean_stale = false
"""


def write_pipeline(tmp_path: Path, services: str) -> Path:
    path = tmp_path / "pipeline.toml"
    path.write_text(FAST_SUPERVISOR + services)
    return path


class TestRunCommand:
    def test_invalid_pipeline_exits_with_config_error(
        self, vepctl_cli: CLI, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = write_pipeline(
            tmp_path,
            '[[services]]\nid = "broker"\nkind = "process"\n'
            'command = ["x"]\ndepends_on = ["missing"]\n',
        )

        assert vepctl_cli("run", str(path)) == 2
        assert "unknown service 'missing'" in capsys.readouterr().err

    def test_run_until_required_service_exits(
        self, vepctl_cli: CLI, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = write_pipeline(
            tmp_path,
            """
[[services]]
id = "receiver"
kind = "process"
command = ["sh", "-c", "echo receiving; sleep 0.3"]

[[services]]
id = "exporter"
kind = "process"
command = ["vep-no-such-binary"]
required = false
""",
        )

        code = vepctl_cli("--no-color", "run", str(path))

        assert code == 0
        out = capsys.readouterr().out
        assert "Run summary" in out
        assert "Executable not found" in out

    def test_required_failure_exits_non_zero(
        self, vepctl_cli: CLI, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = write_pipeline(
            tmp_path,
            """
[[services]]
id = "broker"
kind = "process"
command = ["vep-no-such-binary"]
""",
        )

        code = vepctl_cli("run", str(path), "--grace-period", "0.1")

        assert code == 1
        assert "Error:" in capsys.readouterr().err


class TestExitCodeFor:
    def test_success(self) -> None:
        assert exit_code_for(RunResult(outcomes=[ServiceOutcome("a", True)])) == 0

    def test_required_failure(self) -> None:
        result = RunResult(outcomes=[ServiceOutcome("a", True, error="boom")])

        assert exit_code_for(result) == 1
