"""Container runtime access for hot-reload.

The engine only needs four things from the runtime: container state,
exec, copy-in and delete. ``DockerCLIManager`` provides them by shelling
out to the ``docker`` CLI.
"""

import asyncio
import contextlib
import json
import logging
import os
import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DOCKER_BINARY_ENV = "REACTOR_DOCKER_BINARY"


class DockerError(Exception):
    """Raised when a docker operation fails."""

    pass


@dataclass
class ContainerStatus:
    """Container state information."""

    exists: bool
    running: bool
    name: str = ""
    image: str = ""
    id: str = ""


class DockerManager(ABC):
    """Abstract container runtime used by the hot-reload engine."""

    @abstractmethod
    async def get_container_status(self, container_id: str) -> ContainerStatus:
        """Inspect a container."""
        ...

    async def is_container_running(self, container_id: str) -> bool:
        """Check if a container exists and is running."""
        status = await self.get_container_status(container_id)
        return status.exists and status.running

    @abstractmethod
    async def exec_in_container(
        self,
        container_id: str,
        command: list[str],
        workdir: str | None = None,
        environment: dict[str, str] | None = None,
    ) -> tuple[int, str]:
        """Run a command inside a container.

        Returns:
            Tuple of (exit_code, combined stdout/stderr).
        """
        ...

    @abstractmethod
    async def copy_to_container(self, container_id: str, host_path: Path, container_path: str) -> None:
        """Copy a file or directory from the host into a container."""
        ...

    @abstractmethod
    async def remove_from_container(self, container_id: str, container_path: str) -> None:
        """Remove a path inside a container."""
        ...


async def _kill_process(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()


class DockerCLIManager(DockerManager):
    """DockerManager backed by the docker command-line client."""

    def __init__(self, binary: str | None = None, timeout: float = 60.0):
        self.binary = binary or os.environ.get(DOCKER_BINARY_ENV, "docker")
        self.timeout = timeout

    async def _run(self, args: list[str], timeout: float | None = None) -> tuple[str, str, int]:
        """Run a docker command and return stdout, stderr, and return code."""
        cmd = [self.binary, *args]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            raise DockerError(f"Failed to run docker command: {err}") from err

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout or self.timeout)
        except TimeoutError as err:
            await _kill_process(proc)
            raise DockerError(f"Docker command timed out: {' '.join(cmd)}") from err
        except asyncio.CancelledError:
            await _kill_process(proc)
            raise

        return (
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
            proc.returncode or 0,
        )

    async def get_container_status(self, container_id: str) -> ContainerStatus:
        stdout, stderr, rc = await self._run(["inspect", "--type", "container", container_id])
        if rc != 0:
            if "no such" in stderr.lower():
                return ContainerStatus(exists=False, running=False, name=container_id)
            raise DockerError(f"Failed to inspect container {container_id}: {stderr.strip()}")

        try:
            info = json.loads(stdout)[0]
        except (json.JSONDecodeError, IndexError) as err:
            raise DockerError(f"Unexpected inspect output for {container_id}") from err

        return ContainerStatus(
            exists=True,
            running=bool(info.get("State", {}).get("Running")),
            name=info.get("Name", "").lstrip("/"),
            image=info.get("Config", {}).get("Image", ""),
            id=info.get("Id", ""),
        )

    async def exec_in_container(
        self,
        container_id: str,
        command: list[str],
        workdir: str | None = None,
        environment: dict[str, str] | None = None,
    ) -> tuple[int, str]:
        args = ["exec"]
        if workdir:
            args.extend(["-w", workdir])
        for key, value in (environment or {}).items():
            args.extend(["-e", f"{key}={value}"])
        args.append(container_id)
        args.extend(command)

        logger.debug(f"docker {' '.join(args)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as err:
            raise DockerError(f"Failed to run docker exec: {err}") from err

        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            await _kill_process(proc)
            raise

        return proc.returncode or 0, stdout.decode("utf-8", errors="replace")

    async def copy_to_container(self, container_id: str, host_path: Path, container_path: str) -> None:
        parent = posixpath.dirname(container_path) or "/"
        _, stderr, rc = await self._run(["exec", container_id, "mkdir", "-p", parent])
        if rc != 0:
            raise DockerError(f"Failed to create {parent} in {container_id}: {stderr.strip()}")

        source = str(host_path)
        if host_path.is_dir():
            # Copy directory contents rather than nesting the directory
            source = f"{host_path}/."
            _, stderr, rc = await self._run(["exec", container_id, "mkdir", "-p", container_path])
            if rc != 0:
                raise DockerError(f"Failed to create {container_path} in {container_id}: {stderr.strip()}")

        _, stderr, rc = await self._run(["cp", source, f"{container_id}:{container_path}"])
        if rc != 0:
            raise DockerError(f"Failed to copy {host_path} to {container_id}:{container_path}: {stderr.strip()}")

    async def remove_from_container(self, container_id: str, container_path: str) -> None:
        _, stderr, rc = await self._run(["exec", container_id, "rm", "-rf", container_path])
        if rc != 0:
            raise DockerError(f"Failed to remove {container_path} in {container_id}: {stderr.strip()}")
