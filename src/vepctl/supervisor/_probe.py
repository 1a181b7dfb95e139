"""Bounded polling primitives: readiness probes and port guards.

Both replace the fixed sleep loops of shell launchers with explicit
timeout/interval parameters. Checks are plain async callables so they can
be faked in tests without touching the network.
"""

from __future__ import annotations

import errno
import socket
from typing import TYPE_CHECKING, final

import anyio

from vepctl.exceptions import PortConflict, ReadinessTimeout
from vepctl.utils import create_null_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from structlog.typing import FilteringBoundLogger

    from ._protocol import ServiceRuntime

type CheckFn = Callable[[], Awaitable[bool]]
type PortCheckFn = Callable[[int], Awaitable[bool]]


def tcp_check(host: str, port: int, *, connect_timeout: float = 0.5) -> CheckFn:
    """Build a check that succeeds once host:port accepts TCP connections.

    Args:
        host: Host to connect to.
        port: Port to connect to.
        connect_timeout: Upper bound for a single connection attempt.

    Returns:
        An async check returning True when the connection succeeds.
    """

    async def check() -> bool:
        with anyio.fail_after(connect_timeout):
            stream = await anyio.connect_tcp(host, port)
        await stream.aclose()
        return True

    return check


def alive_check(runtime: ServiceRuntime, *, hold: float) -> CheckFn:
    """Build a check that succeeds if the service is still alive after hold seconds."""

    async def check() -> bool:
        await anyio.sleep(hold)
        return await runtime.is_alive()

    return check


@final
class ReadinessProbe:
    """Polls a check until it succeeds or the timeout elapses.

    A failing check may return False or raise; both count as "not ready
    yet". The wait never exceeds timeout + poll_interval, even if a single
    check hangs.
    """

    __slots__ = ("check", "name", "poll_interval", "timeout")

    def __init__(
        self,
        check: CheckFn,
        *,
        timeout: float,
        poll_interval: float,
        name: str = "",
    ) -> None:
        """Initialize the probe.

        Args:
            check: Async predicate to evaluate.
            timeout: Seconds after which the probe gives up.
            poll_interval: Seconds to sleep between attempts.
            name: Service id reported in ReadinessTimeout.
        """
        self.check = check
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.name = name

    async def wait(self) -> int:
        """Wait until the check succeeds.

        Returns:
            Number of attempts it took.

        Raises:
            ReadinessTimeout: If the check did not succeed in time.
        """
        attempts = 0
        last_error: str | None = None
        deadline = anyio.current_time() + self.timeout

        try:
            with anyio.fail_after(self.timeout + self.poll_interval):
                while True:
                    attempts += 1
                    try:
                        if await self.check():
                            return attempts
                    except Exception as e:  # noqa: BLE001
                        last_error = f"{type(e).__name__}: {e}"

                    if anyio.current_time() >= deadline:
                        break
                    await anyio.sleep(self.poll_interval)
        except TimeoutError:
            last_error = last_error or "check did not complete"

        msg = f"Service '{self.name}' not ready after {self.timeout:.1f}s"
        raise ReadinessTimeout(
            msg,
            service_id=self.name,
            timeout=self.timeout,
            attempts=attempts,
            last_error=last_error,
        )


def _bind_refused(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            s.bind((host, port))
        except OSError as e:
            return e.errno == errno.EADDRINUSE
    return False


@final
class PortGuard:
    """Pre-flight gate ensuring a TCP port is not held by a stale instance."""

    __slots__ = ("_check", "_logger", "connect_timeout", "host")

    def __init__(
        self,
        *,
        host: str = "127.0.0.1",
        connect_timeout: float = 0.5,
        is_bound: PortCheckFn | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the guard.

        Args:
            host: Address the port is checked on.
            connect_timeout: Upper bound for the connect probe.
            is_bound: Replacement for the built-in bound check.
            logger: Logger for wait progress.
        """
        self.host = host
        self.connect_timeout = connect_timeout
        self._check: PortCheckFn = is_bound or self._default_is_bound
        self._logger = logger or create_null_logger()

    async def is_bound(self, port: int) -> bool:
        """Return whether something currently holds port."""
        return await self._check(port)

    async def _default_is_bound(self, port: int) -> bool:
        # Bound if something accepts connections or the port cannot be bound
        try:
            with anyio.fail_after(self.connect_timeout):
                stream = await anyio.connect_tcp(self.host, port)
        except (OSError, TimeoutError):
            return _bind_refused(self.host, port)
        await stream.aclose()
        return True

    async def wait_free(
        self,
        port: int,
        *,
        max_attempts: int = 10,
        interval: float = 1.0,
    ) -> None:
        """Wait for port to become free.

        Args:
            port: The TCP port to check.
            max_attempts: Checks allowed to find the port bound.
            interval: Seconds to sleep between checks.

        Raises:
            PortConflict: If the port is still bound after max_attempts.
        """
        attempts = 0
        while await self.is_bound(port):
            attempts += 1
            if attempts >= max_attempts:
                msg = f"Port {port} still in use after {attempts} checks"
                raise PortConflict(msg, port=port, attempts=attempts)
            self._logger.info(
                "port_in_use",
                port=port,
                attempt=attempts,
                max_attempts=max_attempts,
            )
            await anyio.sleep(interval)
