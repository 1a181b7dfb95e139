"""vepctl exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path


class VepError(Exception):
    """Base exception for vepctl errors."""


# =============================================================================
# Configuration Exceptions
# =============================================================================


class ConfigError(VepError):
    """Base exception for configuration errors."""


class ConfigLoadError(ConfigError):
    """Raised when a pipeline file cannot be loaded or parsed."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        """Initialize with error message and optional location context."""
        super().__init__(message)
        self.path: Path | None = path
        self.line: int | None = line
        self.column: int | None = column


class ConfigValidationError(ConfigError):
    """Raised when a pipeline file fails validation."""

    def __init__(
        self,
        message: str,
        *,
        key: str,
        value: Any,  # pyright: ignore[reportAny,reportExplicitAny]
        expected: str,
        source: str | None = None,
    ) -> None:
        """Initialize with error message and validation context."""
        super().__init__(message)
        self.key: str = key
        self.value: Any = value  # pyright: ignore[reportExplicitAny]
        self.expected: str = expected
        self.source: str | None = source


class ConfigurationError(ConfigError):
    """Raised when a service graph is cyclic or otherwise invalid.

    Attributes:
        service_id: The service whose declaration is invalid, if known.
        cycle: Service ids forming a dependency cycle, first id repeated last.
    """

    def __init__(
        self,
        message: str,
        *,
        service_id: str | None = None,
        cycle: tuple[str, ...] = (),
    ) -> None:
        """Initialize with error message and graph context.

        Args:
            message: Human-readable error message.
            service_id: The service whose declaration is invalid.
            cycle: The dependency cycle, if one was found.
        """
        super().__init__(message)
        self.service_id: str | None = service_id
        self.cycle: tuple[str, ...] = cycle


# =============================================================================
# Orchestration Exceptions
# =============================================================================


class OrchestrationError(VepError):
    """Base exception for service orchestration errors."""


class ServiceNotFoundError(OrchestrationError, KeyError):
    """Raised when a service id is not part of the graph."""

    def __init__(self, message: str, *, service_id: str) -> None:
        """Initialize with error message and service context."""
        super().__init__(message)
        self.service_id: str = service_id


class PortConflict(OrchestrationError):  # noqa: N818
    """Raised when a port is still bound after the bounded wait.

    Attributes:
        port: The TCP port that stayed bound.
        attempts: Number of checks performed before giving up.
    """

    def __init__(self, message: str, *, port: int, attempts: int = 0) -> None:
        """Initialize with error message and port context.

        Args:
            message: Human-readable error message.
            port: The TCP port that stayed bound.
            attempts: Number of checks performed.
        """
        super().__init__(message)
        self.port: int = port
        self.attempts: int = attempts


class StartupFailure(OrchestrationError):  # noqa: N818
    """Raised when a service could not be spawned or died right after start.

    Attributes:
        service_id: The service that failed to start.
        diagnostics: Captured output (e.g. container logs), if any.
        cause: Underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        service_id: str,
        diagnostics: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize with error message and startup context.

        Args:
            message: Human-readable error message.
            service_id: The service that failed to start.
            diagnostics: Captured output of the failed service.
            cause: Underlying exception.
        """
        super().__init__(message)
        self.service_id: str = service_id
        self.diagnostics: str | None = diagnostics
        self.cause: Exception | None = cause


class ReadinessTimeout(OrchestrationError):  # noqa: N818
    """Raised when a readiness check never succeeded within its timeout.

    Attributes:
        service_id: The service being probed.
        timeout: The probe timeout in seconds.
        attempts: Number of check evaluations.
        last_error: String form of the last check error, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        service_id: str,
        timeout: float,
        attempts: int = 0,
        last_error: str | None = None,
    ) -> None:
        """Initialize with error message and probe context.

        Args:
            message: Human-readable error message.
            service_id: The service being probed.
            timeout: The probe timeout in seconds.
            attempts: Number of check evaluations.
            last_error: The last check error, if any.
        """
        super().__init__(message)
        self.service_id: str = service_id
        self.timeout: float = timeout
        self.attempts: int = attempts
        self.last_error: str | None = last_error


class TeardownIncomplete(OrchestrationError):  # noqa: N818
    """Raised when a service survived forced termination."""

    def __init__(
        self, message: str, *, service_id: str, runtime_ref: str | None = None
    ) -> None:
        """Initialize with error message and the leaked service context."""
        super().__init__(message)
        self.service_id: str = service_id
        self.runtime_ref: str | None = runtime_ref


class InvalidTransitionError(OrchestrationError):
    """Raised when a service handle is moved to a state it cannot reach."""

    def __init__(
        self,
        message: str,
        *,
        service_id: str,
        current: str,
        target: str,
    ) -> None:
        """Initialize with error message and transition context."""
        super().__init__(message)
        self.service_id: str = service_id
        self.current: str = current
        self.target: str = target
