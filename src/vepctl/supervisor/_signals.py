"""Bridge from termination signals to the shutdown coordinator."""

from __future__ import annotations

import signal
from typing import TYPE_CHECKING, final

import anyio

from vepctl.utils import create_null_logger

from ._models import ShutdownReason

if TYPE_CHECKING:
    from collections.abc import Sequence

    from anyio.abc import TaskStatus
    from structlog.typing import FilteringBoundLogger

    from ._shutdown import ShutdownCoordinator

DEFAULT_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


@final
class SignalBridge:
    """Turns SIGINT/SIGTERM into a coordinated shutdown.

    Run it in a task group with ``await tg.start(bridge.run)``; the start
    call returns once the handlers are installed.
    """

    __slots__ = ("_coordinator", "_logger", "signals")

    def __init__(
        self,
        coordinator: ShutdownCoordinator,
        *,
        signals: Sequence[signal.Signals] = DEFAULT_SIGNALS,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._logger = logger or create_null_logger()
        self.signals = tuple(signals)

    async def run(
        self, *, task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED
    ) -> None:
        """Receive signals until cancelled.

        Every received signal requests shutdown; repeated signals are
        absorbed by the coordinator's one-shot guard.
        """
        with anyio.open_signal_receiver(*self.signals) as received:
            task_status.started()
            async for signum in received:
                self._logger.info("signal_received", signal=signal.Signals(signum).name)
                await self._coordinator.shutdown(ShutdownReason.SIGNAL)
