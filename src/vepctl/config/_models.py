"""Pipeline configuration models.

This module provides the frozen Pydantic models a pipeline file is
validated into, and their conversion to supervisor types.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from vepctl.supervisor import (
    ContainerAction,
    ProbeKind,
    ProbeSpec,
    ProcessAction,
    RunSettings,
    ServiceGraph,
    ServiceKind,
    ServiceSpec,
)

if TYPE_CHECKING:
    from vepctl.utils import LogFormatType


class LogLevel(StrEnum):
    """Log level threshold values.

    Values are ordered from most verbose (debug) to least verbose (error).
    """

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LogFormat(StrEnum):
    """Log output format values."""

    JSON = "json"
    TEXT = "text"


class LoggingConfig(BaseModel):
    """Logging configuration section.

    Attributes:
        level: Log level threshold.
        format: Log output format.
        file: Path to log file (empty logs to stderr).
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.TEXT
    file: str = ""

    @property
    def log_format(self) -> LogFormatType:
        return "json" if self.format == LogFormat.JSON else "text"


class SupervisorConfiguration(BaseModel):
    """Run parameters section.

    Attributes:
        grace_period: Seconds services get to stop before being killed.
        probe_timeout: Default readiness timeout in seconds.
        probe_interval: Default delay between readiness attempts.
        connect_timeout: Timeout for a single TCP connect attempt.
        max_port_wait: Port-free checks before declaring a conflict.
        port_wait_interval: Delay between port-free checks.
        monitor_interval: Delay between liveness sweeps once running.
        liveness_delay: Delay before confirming a new container still runs.
        container_engine: Engine binary, or "auto" to prefer podman.
        container_prefix: Name prefix of containers owned by vepctl.
        clean_stale: Remove prefixed containers before starting.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    grace_period: float = Field(default=2.0, ge=0)
    probe_timeout: float = Field(default=10.0, gt=0)
    probe_interval: float = Field(default=0.5, gt=0)
    connect_timeout: float = Field(default=0.5, gt=0)
    max_port_wait: int = Field(default=10, ge=1)
    port_wait_interval: float = Field(default=1.0, ge=0)
    monitor_interval: float = Field(default=1.0, gt=0)
    liveness_delay: float = Field(default=0.5, ge=0)
    container_engine: Literal["auto", "podman", "docker"] = "auto"
    container_prefix: str = Field(default="vep", min_length=1)
    clean_stale: bool = True

    def to_settings(self) -> RunSettings:
        return RunSettings(
            grace_period=self.grace_period,
            probe_timeout=self.probe_timeout,
            probe_interval=self.probe_interval,
            connect_timeout=self.connect_timeout,
            max_port_wait=self.max_port_wait,
            port_wait_interval=self.port_wait_interval,
            monitor_interval=self.monitor_interval,
            liveness_delay=self.liveness_delay,
            container_engine=self.container_engine,
            container_prefix=self.container_prefix,
            clean_stale=self.clean_stale,
        )


class ProbeConfiguration(BaseModel):
    """Readiness probe of one service."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    kind: ProbeKind = ProbeKind.TCP
    host: str = "127.0.0.1"
    port: int | None = Field(default=None, ge=1, le=65535)
    hold: float = Field(default=1.0, ge=0)
    timeout: float | None = Field(default=None, gt=0)
    poll_interval: float | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_port(self) -> Self:
        if self.kind == ProbeKind.TCP and self.port is None:
            msg = "tcp probes need a port"
            raise ValueError(msg)
        return self

    def to_spec(self) -> ProbeSpec:
        return ProbeSpec(
            kind=self.kind,
            host=self.host,
            port=self.port,
            hold=self.hold,
            timeout=self.timeout,
            poll_interval=self.poll_interval,
        )


class ServiceConfiguration(BaseModel):
    """One ``[[services]]`` entry.

    Process services use command, cwd and env; container services use image
    and the container options. Keys of the other kind are rejected.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        frozen=True, extra="forbid", coerce_numbers_to_str=True
    )

    id: str = Field(min_length=1, pattern=r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
    kind: ServiceKind
    required: bool = True
    depends_on: tuple[str, ...] = ()
    claims_ports: tuple[int, ...] = ()
    probe: ProbeConfiguration | None = None
    env: dict[str, str] = Field(default_factory=dict)

    # Process services
    command: tuple[str, ...] = ()
    cwd: str | None = None

    # Container services
    image: str | None = None
    args: tuple[str, ...] = ()
    network: str | None = None
    ports: tuple[str, ...] = ()
    volumes: tuple[str, ...] = ()
    cap_add: tuple[str, ...] = ()
    platform_args: tuple[str, ...] = ()
    pull_missing: bool = False

    @model_validator(mode="after")
    def _check_kind_fields(self) -> Self:
        if self.kind == ServiceKind.PROCESS:
            if not self.command:
                msg = "process services need a command"
                raise ValueError(msg)
            container_only = [
                name
                for name in ("image", "network")
                if getattr(self, name) is not None
            ]
            container_only.extend(
                name
                for name in ("args", "ports", "volumes", "cap_add", "platform_args")
                if getattr(self, name)
            )
            if container_only:
                msg = f"process services do not take {', '.join(container_only)}"
                raise ValueError(msg)
        else:
            if not self.image:
                msg = "container services need an image"
                raise ValueError(msg)
            if self.command or self.cwd is not None:
                msg = "container services take args, not command or cwd"
                raise ValueError(msg)
        return self

    def to_spec(self, base_dir: Path | None = None) -> ServiceSpec:
        """Convert to a ServiceSpec.

        Args:
            base_dir: Directory relative cwd values are resolved against.

        Returns:
            The equivalent ServiceSpec.
        """
        action: ProcessAction | ContainerAction
        if self.kind == ServiceKind.PROCESS:
            cwd = Path(self.cwd) if self.cwd is not None else None
            if cwd is not None and base_dir is not None and not cwd.is_absolute():
                cwd = base_dir / cwd
            action = ProcessAction(command=self.command, cwd=cwd, env=dict(self.env))
        else:
            action = ContainerAction(
                image=self.image or "",
                args=self.args,
                network=self.network,
                ports=self.ports,
                volumes=self.volumes,
                env=dict(self.env),
                cap_add=self.cap_add,
                platform_args=self.platform_args,
                pull_missing=self.pull_missing,
            )
        return ServiceSpec(
            id=self.id,
            kind=self.kind,
            action=action,
            depends_on=self.depends_on,
            probe=self.probe.to_spec() if self.probe is not None else None,
            required=self.required,
            claims_ports=self.claims_ports,
        )


class PipelineConfig(BaseModel):
    """A validated pipeline file.

    Attributes:
        supervisor: Run parameters.
        logging: Logging settings.
        variables: Placeholder values, after environment overrides.
        services: Services in source order.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        frozen=True, extra="forbid", coerce_numbers_to_str=True
    )

    supervisor: SupervisorConfiguration = SupervisorConfiguration()
    logging: LoggingConfig = LoggingConfig()
    variables: dict[str, str] = Field(default_factory=dict)
    services: tuple[ServiceConfiguration, ...] = ()

    def run_settings(self) -> RunSettings:
        return self.supervisor.to_settings()

    def to_graph(self, base_dir: Path | None = None) -> ServiceGraph:
        """Build the service graph; call validate() on it before use."""
        return ServiceGraph(service.to_spec(base_dir) for service in self.services)
