"""Idempotent, escalating teardown of every started service.

The coordinator owns the registry of handles. The registry is append-only
until the single teardown pass drains it: handles are stopped in reverse
registration order, gracefully first, then forcibly once the grace period
has passed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, final

import anyio

from vepctl.exceptions import TeardownIncomplete
from vepctl.utils import create_null_logger

from ._models import ServiceEventType, ServiceState, ShutdownReason, get_timestamp
from ._output import emit_event

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from structlog.typing import FilteringBoundLogger

    from ._models import ServiceHandle
    from ._probe import PortGuard
    from ._protocol import OutputSink


@final
class ShutdownCoordinator:
    """Stops every registered service exactly once.

    shutdown() may be called from any task, any number of times, including
    concurrently with the startup loop. Only the first call tears down; later
    calls return immediately. Use wait_complete() to wait for the teardown
    started by someone else.
    """

    __slots__ = (
        "_complete",
        "_handles",
        "_lock",
        "_logger",
        "_output_sink",
        "_port_guard",
        "_reason",
        "_started",
        "_triggered",
        "_warnings",
        "grace_period",
        "kill_timeout",
        "poll_interval",
    )

    def __init__(
        self,
        *,
        grace_period: float = 2.0,
        kill_timeout: float = 5.0,
        poll_interval: float = 0.1,
        output_sink: OutputSink | None = None,
        port_guard: PortGuard | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the coordinator.

        Must be created inside a running event loop.

        Args:
            grace_period: Seconds services get to exit after the graceful stop.
            kill_timeout: Seconds to wait for exit after force termination.
            poll_interval: Delay between liveness checks while waiting.
            output_sink: Sink for lifecycle events.
            port_guard: Used to confirm claimed ports were released.
            logger: Structured logger.
        """
        self.grace_period = grace_period
        self.kill_timeout = kill_timeout
        self.poll_interval = poll_interval
        self._output_sink = output_sink
        self._port_guard = port_guard
        self._logger = logger or create_null_logger()
        self._handles: list[ServiceHandle] = []
        self._warnings: list[str] = []
        self._started = False
        self._reason: ShutdownReason | None = None
        self._lock = anyio.Lock()
        self._triggered = anyio.Event()
        self._complete = anyio.Event()

    @property
    def handles(self) -> tuple[ServiceHandle, ...]:
        """Return every handle ever registered, in registration order."""
        return tuple(self._handles)

    @property
    def triggered(self) -> bool:
        return self._started

    @property
    def reason(self) -> ShutdownReason | None:
        return self._reason

    @property
    def warnings(self) -> list[str]:
        return list(self._warnings)

    def register(self, handle: ServiceHandle) -> None:
        """Add a handle to the set stopped at teardown."""
        self._handles.append(handle)
        self._logger.debug(
            "handle_registered",
            service=handle.spec_id,
            runtime_ref=handle.runtime_ref,
        )

    async def track(
        self, start: Callable[[], Awaitable[ServiceHandle]]
    ) -> ServiceHandle | None:
        """Start a service and register its handle as one step.

        Teardown cannot snapshot the registry while a start is in flight, so
        a handle created concurrently with a shutdown is still stopped.

        Args:
            start: Coroutine factory producing the new handle.

        Returns:
            The registered handle, or None if teardown has already begun.
        """
        async with self._lock:
            if self._started:
                return None
            with anyio.CancelScope(shield=True):
                handle = await start()
                self.register(handle)
            return handle

    async def wait_triggered(self) -> None:
        await self._triggered.wait()

    async def wait_complete(self) -> None:
        await self._complete.wait()

    async def shutdown(self, reason: ShutdownReason = ShutdownReason.REQUESTED) -> None:
        """Stop every registered service, once.

        Args:
            reason: What triggered the teardown; only the first reason is kept.
        """
        # No await between check and set: atomic within the event loop
        if self._started:
            return
        self._started = True
        self._reason = reason
        self._triggered.set()

        with anyio.CancelScope(shield=True):
            try:
                async with self._lock:
                    await self._teardown()
            finally:
                self._complete.set()

    async def _teardown(self) -> None:
        handles = list(reversed(self._handles))
        self._logger.info(
            "teardown_started",
            reason=self._reason.value if self._reason else None,
            services=[h.spec_id for h in handles],
        )

        for handle in handles:
            await self._request_stop(handle)

        pending = await self._wait_stopped(handles, self.grace_period)
        for handle in pending:
            await self._force_stop(handle)

        leaked = await self._wait_stopped(pending, self.kill_timeout)
        for handle in leaked:
            msg = (
                f"Service '{handle.spec_id}' ({handle.runtime_ref}) is still "
                "running after forced termination"
            )
            error = TeardownIncomplete(
                msg, service_id=handle.spec_id, runtime_ref=handle.runtime_ref
            )
            self._warnings.append(str(error))
            self._logger.error(
                "teardown_incomplete",
                service=handle.spec_id,
                runtime_ref=handle.runtime_ref,
            )

        for handle in handles:
            if handle not in leaked:
                await self._finalize(handle)

        self._logger.info(
            "teardown_finished",
            stopped=len(handles) - len(leaked),
            leaked=len(leaked),
        )

    async def _request_stop(self, handle: ServiceHandle) -> None:
        if handle.state in (ServiceState.STARTING, ServiceState.READY):
            handle.transition(ServiceState.STOPPING)
        await self._emit(handle, ServiceEventType.STOPPING)
        try:
            await handle.runtime.terminate()
        except Exception as e:  # noqa: BLE001
            # Escalation below still gets a chance to stop it
            self._warn(handle, "graceful stop failed", e)

    async def _force_stop(self, handle: ServiceHandle) -> None:
        handle.forced = True
        try:
            await handle.runtime.kill()
        except Exception as e:  # noqa: BLE001
            self._warn(handle, "force stop failed", e)
        await self._emit(
            handle,
            ServiceEventType.KILLED,
            message=f"did not exit within {self.grace_period:.1f}s",
        )

    async def _finalize(self, handle: ServiceHandle) -> None:
        with anyio.move_on_after(self.kill_timeout):
            try:
                await handle.runtime.release()
            except Exception as e:  # noqa: BLE001
                self._warn(handle, "release failed", e)

        handle.exit_code = handle.runtime.exit_code
        handle.stopped_at = get_timestamp()
        if handle.state == ServiceState.STOPPING:
            handle.transition(ServiceState.STOPPED)
        await self._emit(handle, ServiceEventType.STOPPED, exit_code=handle.exit_code)

        if self._port_guard is None:
            return
        for port in handle.claims_ports:
            if await self._port_guard.is_bound(port):
                msg = f"Port {port} of '{handle.spec_id}' still bound after stop"
                self._warnings.append(msg)
                self._logger.warning(
                    "port_not_released", service=handle.spec_id, port=port
                )

    async def _wait_stopped(
        self, handles: list[ServiceHandle], timeout: float
    ) -> list[ServiceHandle]:
        pending = list(handles)
        with anyio.move_on_after(timeout):
            while pending:
                pending = [h for h in pending if await self._is_alive(h)]
                if not pending:
                    break
                await anyio.sleep(self.poll_interval)
        return pending

    async def _is_alive(self, handle: ServiceHandle) -> bool:
        try:
            return await handle.runtime.is_alive()
        except Exception as e:  # noqa: BLE001
            # Unknown counts as alive so escalation still happens
            self._logger.debug(
                "liveness_unknown", service=handle.spec_id, error=str(e)
            )
            return True

    def _warn(self, handle: ServiceHandle, what: str, error: Exception) -> None:
        msg = f"{what} for '{handle.spec_id}': {error}"
        self._warnings.append(msg)
        self._logger.warning(
            "teardown_step_failed",
            service=handle.spec_id,
            step=what,
            error=str(error),
        )

    async def _emit(
        self,
        handle: ServiceHandle,
        event_type: ServiceEventType,
        *,
        exit_code: int | None = None,
        message: str | None = None,
    ) -> None:
        if self._output_sink is None:
            return
        await emit_event(
            self._output_sink,
            handle.spec_id,
            event_type,
            runtime_ref=handle.runtime_ref,
            exit_code=exit_code,
            message=message,
        )
