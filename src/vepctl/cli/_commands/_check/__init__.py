# pyright: reportUnusedCallResult=false
# ruff: noqa: TC003, A002  # Path needed at runtime for cyclopts parameter parsing
"""Check command: validate a pipeline and show its start order."""

from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter

from vepctl.cli._commands._context import CLIContext, OutputFormat
from vepctl.cli._commands._shared import (
    ExitCode,
    FormattableData,
    exit_with_error,
    format_json,
    format_table,
    format_yaml,
)
from vepctl.config import ValidationIssue, check_pipeline, load_pipeline
from vepctl.exceptions import ConfigError
from vepctl.supervisor import (
    ContainerAction,
    ProcessAction,
    RunSettings,
    ServiceSpec,
)

app = App(
    name="check", help="Validate a pipeline and print its start order", help_on_error=True
)


def _describe_action(spec: ServiceSpec) -> str:
    action = spec.action
    if isinstance(action, ProcessAction):
        return " ".join(action.command)
    if isinstance(action, ContainerAction):
        return action.image
    return ""


def _describe_probe(spec: ServiceSpec) -> str:
    probe = spec.probe
    if probe is None:
        return ""
    if probe.port is not None:
        return f"{probe.kind.value} {probe.host}:{probe.port}"
    return f"{probe.kind.value} {probe.hold:g}s"


def plan_data(
    pipeline: Path, order: tuple[ServiceSpec, ...], settings: RunSettings
) -> FormattableData:
    """Build the machine-readable start plan of a pipeline."""
    return {
        "pipeline": str(pipeline),
        "settings": {
            "grace_period": settings.grace_period,
            "probe_timeout": settings.probe_timeout,
            "probe_interval": settings.probe_interval,
            "max_port_wait": settings.max_port_wait,
            "container_engine": settings.container_engine,
            "container_prefix": settings.container_prefix,
        },
        "start_order": [
            {
                "id": spec.id,
                "kind": spec.kind.value,
                "required": spec.required,
                "depends_on": list(spec.depends_on),
                "action": _describe_action(spec),
                "probe": _describe_probe(spec) or None,
                "claims_ports": list(spec.claims_ports),
            }
            for spec in order
        ],
    }


def _format_issues(pipeline: Path, issues: list[ValidationIssue]) -> str:
    lines = [f"{pipeline}:"]
    for issue in issues:
        prefix = "ERROR" if issue.severity == "error" else "WARNING"
        key_info = f" '{issue.key}'" if issue.key else ""
        lines.append(f"  {prefix}: {issue.message}{key_info}")
        if issue.expected:
            lines.append(f"         Expected: {issue.expected}")
    return "\n".join(lines)


@app.default
def check(
    pipeline: Annotated[Path, Parameter(help="Path to the TOML pipeline file.")],
    *,
    format: Annotated[
        OutputFormat,
        Parameter(name=["--format"], help="Output format (table, json, yaml)"),
    ] = OutputFormat.TABLE,
) -> None:
    """Validate a pipeline file and print the resolved start order.

    Reports every schema problem at once. Exits 0 if the pipeline is
    valid and 2 otherwise.
    """
    ctx = CLIContext.get_current()
    try:
        issues = check_pipeline(pipeline)
        if issues:
            print(_format_issues(pipeline, issues))  # noqa: T201
            raise SystemExit(ExitCode.CONFIG_ERROR)
        config = load_pipeline(pipeline)
        order = config.to_graph(pipeline.parent).ordered()
    except ConfigError as e:
        exit_with_error(str(e), ExitCode.CONFIG_ERROR, console=ctx.error_console)

    data = plan_data(pipeline, order, config.run_settings())
    if format == OutputFormat.JSON:
        print(format_json(data))  # noqa: T201
    elif format == OutputFormat.YAML:
        print(format_yaml(data).rstrip())  # noqa: T201
    else:
        rows = [
            [
                str(position),
                entry["id"],
                entry["kind"],
                "yes" if entry["required"] else "no",
                ", ".join(entry["depends_on"]),
                entry["probe"] or "",
            ]
            for position, entry in enumerate(data["start_order"], start=1)
        ]
        print(  # noqa: T201
            format_table(
                ["#", "Service", "Kind", "Required", "Depends on", "Probe"], rows
            ).rstrip()
        )
