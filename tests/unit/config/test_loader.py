# pyright: reportAny=false
from pathlib import Path

import pytest
from pyfakefs.fake_filesystem import FakeFilesystem

from vepctl.config import (
    deep_merge,
    expand_variables,
    parse_env_vars,
    parse_string_value,
    read_toml_file,
    resolve_variables,
    set_nested_key,
)
from vepctl.exceptions import ConfigLoadError, ConfigValidationError


class TestReadTomlFile:
    def test_parses_valid_toml(self, fs: FakeFilesystem) -> None:
        path = Path("/pipelines/local.toml")
        fs.create_file(path, contents='[supervisor]\ngrace_period = 3.0\n')

        assert read_toml_file(path) == {"supervisor": {"grace_period": 3.0}}

    def test_missing_file_is_load_error(self, fs: FakeFilesystem) -> None:
        path = Path("/pipelines/missing.toml")

        with pytest.raises(ConfigLoadError, match="not found") as exc_info:
            _ = read_toml_file(path)

        assert exc_info.value.path == path

    def test_invalid_toml_reports_location(self, fs: FakeFilesystem) -> None:
        path = Path("/pipelines/broken.toml")
        fs.create_file(path, contents='[supervisor]\ngrace_period = 3.0\n[services\n')

        with pytest.raises(ConfigLoadError) as exc_info:
            _ = read_toml_file(path)

        assert exc_info.value.path == path
        assert "line 3" in str(exc_info.value)


class TestDeepMerge:
    def test_merges_tables_recursively(self) -> None:
        base = {"supervisor": {"grace_period": 2.0, "probe_timeout": 10.0}}
        override = {"supervisor": {"grace_period": 5.0}}

        assert deep_merge(base, override) == {
            "supervisor": {"grace_period": 5.0, "probe_timeout": 10.0}
        }

    def test_arrays_are_replaced(self) -> None:
        base = {"services": [{"id": "a"}]}
        override = {"services": [{"id": "b"}]}

        assert deep_merge(base, override) == {"services": [{"id": "b"}]}

    def test_inputs_are_not_modified(self) -> None:
        base = {"supervisor": {"grace_period": 2.0}, "services": [{"id": "a"}]}
        override = {"supervisor": {"grace_period": 5.0}}

        merged = deep_merge(base, override)
        merged["services"][0]["id"] = "changed"

        assert base == {"supervisor": {"grace_period": 2.0}, "services": [{"id": "a"}]}


class TestEnvVars:
    def test_parses_nested_keys(self) -> None:
        environ = {
            "VEPCTL_SUPERVISOR__GRACE_PERIOD": "5",
            "VEPCTL_LOGGING__LEVEL": "debug",
            "HOME": "/root",
        }

        assert parse_env_vars("VEPCTL_", environ) == {
            "supervisor": {"grace_period": 5},
            "logging": {"level": "debug"},
        }

    def test_ignores_bare_prefix(self) -> None:
        assert parse_env_vars("VEPCTL_", {"VEPCTL_": "x"}) == {}

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("true", True),
            ("False", False),
            ("10", 10),
            ("2.5", 2.5),
            ('["a", "b"]', ["a", "b"]),
            ("podman", "podman"),
            ("1.2.3", "1.2.3"),
            ("[not json", "[not json"),
        ],
    )
    def test_parse_string_value(self, raw: str, expected: object) -> None:
        assert parse_string_value(raw) == expected

    def test_set_nested_key_replaces_scalars(self) -> None:
        d: dict[str, object] = {"supervisor": 1}

        set_nested_key(d, "supervisor.grace_period", 3)

        assert d == {"supervisor": {"grace_period": 3}}


class TestVariables:
    def test_environment_overrides_declared_values(self) -> None:
        declared = {"BROKER_PORT": 5556, "CAN_IF": "vcan0", "REPLAY": False}

        variables = resolve_variables(declared, {"CAN_IF": "can0"})

        assert variables == {"BROKER_PORT": "5556", "CAN_IF": "can0", "REPLAY": "false"}

    def test_expands_nested_values(self) -> None:
        value = {
            "command": ["vep-broker", "--port", "${BROKER_PORT}"],
            "env": {"CAN": "${CAN_IF}", "LOG": "${LOG_DIR:-/tmp/vep}"},
            "required": True,
        }

        expanded = expand_variables(
            value, {"BROKER_PORT": "5556"}, {"CAN_IF": "vcan0"}
        )

        assert expanded == {
            "command": ["vep-broker", "--port", "5556"],
            "env": {"CAN": "vcan0", "LOG": "/tmp/vep"},
            "required": True,
        }

    def test_variables_take_precedence_over_environment(self) -> None:
        assert expand_variables("${PORT}", {"PORT": "1"}, {"PORT": "2"}) == "1"

    def test_empty_default_is_allowed(self) -> None:
        assert expand_variables("x${SUFFIX:-}", {}, {}) == "x"

    def test_undefined_variable_names_the_key(self) -> None:
        with pytest.raises(ConfigValidationError) as exc_info:
            _ = expand_variables(
                {"services": [{"image": "${REGISTRY}/broker"}]}, {}, {}
            )

        assert exc_info.value.key == "services[0].image"
        assert "REGISTRY" in str(exc_info.value)
