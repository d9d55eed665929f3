"""Container runtime integration."""

from reactor.docker.manager import (
    ContainerStatus,
    DockerCLIManager,
    DockerError,
    DockerManager,
)

__all__ = ["ContainerStatus", "DockerCLIManager", "DockerError", "DockerManager"]
