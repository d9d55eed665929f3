"""Pytest configuration and fixtures."""

import asyncio
import posixpath
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from reactor.docker import ContainerStatus, DockerError, DockerManager
from reactor.hotreload.build import BuildTrigger
from reactor.hotreload.models import BuildOptions, BuildResult, HotReloadOptions

# Short timings so pipeline tests settle quickly
FAST_OPTIONS = HotReloadOptions(debounce_delay_ms=50, poll_interval_ms=20)


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll until predicate() is true or fail after timeout seconds."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(0.02)


class FakeDockerManager(DockerManager):
    """In-memory container runtime.

    ``files`` maps container paths to the bytes copied there. Host paths in
    ``fail_paths`` raise DockerError on copy; ``copy_delay`` slows copies.
    ``copy_error`` is raised by the next copy only.
    """

    def __init__(self, running: bool = True, exists: bool = True):
        self.running = running
        self.exists = exists
        self.files: dict[str, bytes] = {}
        self.copies: list[tuple[str, Path, str]] = []
        self.removed: list[str] = []
        self.execs: list[tuple[str, list[str], str | None]] = []
        self.exec_result: tuple[int, str] = (0, "")
        self.exec_delay = 0.0
        self.copy_delay = 0.0
        self.fail_paths: set[Path] = set()
        self.inspect_error: str | None = None
        self.copy_error: Exception | None = None

    async def get_container_status(self, container_id: str) -> ContainerStatus:
        if self.inspect_error:
            raise DockerError(self.inspect_error)
        return ContainerStatus(
            exists=self.exists,
            running=self.exists and self.running,
            name=container_id,
            id=container_id,
        )

    async def exec_in_container(
        self,
        container_id: str,
        command: list[str],
        workdir: str | None = None,
        environment: dict[str, str] | None = None,
    ) -> tuple[int, str]:
        self.execs.append((container_id, command, workdir))
        if self.exec_delay:
            await asyncio.sleep(self.exec_delay)
        return self.exec_result

    async def copy_to_container(self, container_id: str, host_path: Path, container_path: str) -> None:
        if self.copy_delay:
            await asyncio.sleep(self.copy_delay)
        if self.copy_error is not None:
            error, self.copy_error = self.copy_error, None
            raise error
        if host_path in self.fail_paths:
            raise DockerError(f"copy failed for {host_path}")
        self.copies.append((container_id, host_path, container_path))
        if host_path.is_dir():
            for child in host_path.rglob("*"):
                if child.is_file():
                    rel = child.relative_to(host_path).as_posix()
                    self.files[posixpath.join(container_path, rel)] = child.read_bytes()
        else:
            self.files[container_path] = host_path.read_bytes()

    async def remove_from_container(self, container_id: str, container_path: str) -> None:
        self.removed.append(container_path)
        self.files.pop(container_path, None)


@pytest.fixture
def docker() -> FakeDockerManager:
    """A running fake container."""
    return FakeDockerManager()


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A small Go project."""
    root = tmp_path / "project"
    root.mkdir()
    (root / "go.mod").write_text("module example.com/acme/server\n\ngo 1.22\n")
    (root / "main.go").write_text("package main\n\nfunc main() {}\n")
    return root


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="run live integration tests against a real docker daemon",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "live: mark test as requiring a live docker daemon (deselect with '-m \"not live\"')",
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is specified."""
    if config.getoption("--run-live"):
        return

    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


class ControlledBuildTrigger(BuildTrigger):
    """BuildTrigger whose builds are simulated.

    Builds block on ``gate`` when it is set to an unset Event. Tracks how
    many builds run at once.
    """

    def __init__(self, docker: DockerManager | None = None):
        super().__init__(docker)
        self.calls: list[tuple[list[str], BuildOptions]] = []
        self.running = 0
        self.max_running = 0
        self.succeed = True
        self.gate: asyncio.Event | None = None

    async def execute_build(self, path, command, options=None) -> BuildResult:
        self.calls.append((command, options or BuildOptions()))
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.gate is not None:
                await self.gate.wait()
            return BuildResult(
                success=self.succeed,
                command=command,
                exit_code=0 if self.succeed else 1,
                duration_seconds=0.01,
                error=None if self.succeed else "simulated failure",
            )
        finally:
            self.running -= 1


@pytest.fixture
def build_trigger() -> ControlledBuildTrigger:
    return ControlledBuildTrigger()
