"""Container engine adapter.

Talks to podman or docker through their command-line interfaces, the same
calls a launch script would make: run, ps, kill, rm, logs, image inspect.
"""

from __future__ import annotations

import os
import shutil
import signal
from typing import TYPE_CHECKING, final

import anyio

from vepctl.exceptions import ConfigurationError
from vepctl.utils import create_null_logger

if TYPE_CHECKING:
    from collections.abc import Callable
    from subprocess import CompletedProcess

    from structlog.typing import FilteringBoundLogger

    from ._models import ContainerAction, EngineName

_ENGINE_CANDIDATES = ("podman", "docker")


def build_run_args(name: str, action: ContainerAction) -> list[str]:
    """Build the arguments of a detached ``run`` call.

    Args:
        name: Container name.
        action: The container start action.

    Returns:
        Arguments following the engine binary.
    """
    args = ["run", "-d", "--name", name, *action.platform_args]
    if action.network:
        args.extend(["--network", action.network])
    for cap in action.cap_add:
        args.extend(["--cap-add", cap])
    for port in action.ports:
        args.extend(["-p", port])
    for volume in action.volumes:
        args.extend(["-v", volume])
    for key, value in action.env.items():
        args.extend(["-e", f"{key}={value}"])
    args.append(action.image)
    args.extend(action.args)
    return args


@final
class ContainerEngine:
    """Thin async wrapper around the podman/docker CLI."""

    __slots__ = ("_logger", "binary")

    def __init__(
        self,
        binary: str = "podman",
        *,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self.binary = binary
        self._logger = logger or create_null_logger()

    @classmethod
    def detect(
        cls,
        preference: EngineName = "auto",
        *,
        logger: FilteringBoundLogger | None = None,
    ) -> ContainerEngine:
        """Pick a container engine.

        Args:
            preference: Explicit engine, or "auto" to prefer podman over docker.
            logger: Logger passed to the engine.

        Returns:
            A ContainerEngine for the selected binary.

        Raises:
            ConfigurationError: If "auto" finds neither podman nor docker.
        """
        if preference != "auto":
            return cls(preference, logger=logger)
        for candidate in _ENGINE_CANDIDATES:
            if shutil.which(candidate):
                return cls(candidate, logger=logger)
        msg = "No container engine found (install podman or docker)"
        raise ConfigurationError(msg)

    async def _run(self, *args: str, check: bool = False) -> CompletedProcess[bytes]:
        self._logger.debug("engine_call", engine=self.binary, args=list(args))
        return await anyio.run_process([self.binary, *args], check=check)

    async def image_exists(self, image: str) -> bool:
        result = await self._run("image", "inspect", image)
        return result.returncode == 0

    async def pull(self, image: str) -> None:
        """Pull an image.

        Raises:
            subprocess.CalledProcessError: If the pull fails.
        """
        _ = await self._run("pull", image, check=True)

    async def run_detached(self, name: str, action: ContainerAction) -> str:
        """Create and start a container in the background.

        Returns:
            The container id printed by the engine.

        Raises:
            subprocess.CalledProcessError: If the engine refuses to start it.
        """
        result = await self._run(*build_run_args(name, action), check=True)
        return result.stdout.decode(errors="replace").strip()

    async def is_running(self, name: str) -> bool:
        result = await self._run("ps", "-q", "--filter", f"name=^{name}$")
        return result.returncode == 0 and bool(result.stdout.strip())

    async def exit_code(self, name: str) -> int | None:
        result = await self._run(
            "inspect", "--format", "{{.State.ExitCode}}", name
        )
        if result.returncode != 0:
            return None
        try:
            return int(result.stdout.decode().strip())
        except ValueError:
            return None

    async def kill(self, name: str, sig: signal.Signals = signal.SIGTERM) -> None:
        """Send a signal to a container's main process."""
        _ = await self._run("kill", "--signal", sig.name, name)

    async def remove(self, name: str) -> bool:
        """Force-remove a container, running or not.

        Returns:
            True if the engine reported success.
        """
        result = await self._run("rm", "-f", name)
        return result.returncode == 0

    async def logs(self, name: str, *, tail: int = 100) -> str:
        """Fetch the most recent output of a container, stdout and stderr."""
        result = await self._run("logs", "--tail", str(tail), name)
        out = result.stdout.decode(errors="replace")
        err = result.stderr.decode(errors="replace")
        return (out + err).strip()

    async def list_names(self, prefix: str) -> list[str]:
        """List names of all containers, running or not, starting with prefix."""
        result = await self._run(
            "ps", "-a", "--filter", f"name=^{prefix}", "--format", "{{.Names}}"
        )
        if result.returncode != 0:
            return []
        names = result.stdout.decode(errors="replace").split()
        return [n for n in names if n.startswith(prefix)]


@final
class ContainerRuntime:
    """ServiceRuntime for a detached container."""

    __slots__ = ("_engine", "_exit_code", "container_id", "name")

    def __init__(self, engine: ContainerEngine, name: str, container_id: str) -> None:
        self._engine = engine
        self._exit_code: int | None = None
        self.name = name
        self.container_id = container_id

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    async def logs(self) -> str:
        """Fetch the container's recent output for diagnostics."""
        return await self._engine.logs(self.name)

    async def is_alive(self) -> bool:
        return await self._engine.is_running(self.name)

    async def terminate(self) -> None:
        await self._engine.kill(self.name, signal.SIGTERM)

    async def kill(self) -> None:
        _ = await self._engine.remove(self.name)

    async def release(self) -> None:
        if self._exit_code is None:
            self._exit_code = await self._engine.exit_code(self.name)
        _ = await self._engine.remove(self.name)


def run_owner(name: str, prefix: str) -> int | None:
    """Return the supervisor pid encoded in a container name.

    Names follow ``{prefix}{pid}-{token}-{service}``. Names without a pid
    component yield None.
    """
    if not name.startswith(prefix):
        return None
    owner, _, _ = name[len(prefix) :].partition("-")
    return int(owner) if owner.isdigit() else None


def pid_alive(pid: int) -> bool:
    """Whether a process with this pid exists on the host."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, but belongs to another user
        return True
    return True


async def clean_stale_containers(
    engine: ContainerEngine,
    prefix: str,
    *,
    is_alive: Callable[[int], bool] = pid_alive,
    logger: FilteringBoundLogger | None = None,
) -> list[str]:
    """Remove containers left behind by earlier runs.

    Containers whose owning supervisor is still running are left alone,
    so concurrent runs sharing a prefix do not remove each other's
    services.

    Args:
        engine: Engine the containers were started with.
        prefix: Name prefix identifying containers owned by vepctl.
        is_alive: Tells whether the supervisor with a given pid still runs.
        logger: Structured logger.

    Returns:
        Names of the containers that were removed.
    """
    logger = logger or create_null_logger()
    removed: list[str] = []
    for name in await engine.list_names(prefix):
        owner = run_owner(name, prefix)
        if owner is not None and is_alive(owner):
            logger.debug("container_in_use", container=name, owner_pid=owner)
            continue
        if await engine.remove(name):
            removed.append(name)
            logger.info("stale_container_removed", container=name)
        else:
            logger.warning("stale_container_not_removed", container=name)
    return removed
