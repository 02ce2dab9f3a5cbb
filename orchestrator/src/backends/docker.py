"""
Container runtime wrapper (docker CLI).
"""

import logging

from orchestrator.src.backends.remote import ContainerTarget, capture_command
from orchestrator.src.errors import RemoteCommandError

logger = logging.getLogger(__name__)

class ContainerRuntime:
    def __init__(self, binary: str = "docker"):
        self.binary = binary

    def pull(self, image: str) -> bool:
        """Pull an image. Returns False if the image cannot be pulled."""
        logger.info(f"Pulling image {image}")
        result = capture_command([self.binary, "pull", image])
        if result.returncode != 0:
            logger.error(f"Failed to pull {image}: {result.stderr.strip()}")
            return False
        return True

    def start(self, image: str) -> str:
        """Start an idle long-lived container and return its id."""
        result = capture_command([
            self.binary, "run", "--detach",
            "--net=host",
            "--security-opt", "label=disable",
            image, "sleep", "infinity",
        ])
        if result.returncode != 0:
            raise RemoteCommandError(
                f"Failed to start container from {image}: {result.stderr.strip()}",
                result.returncode,
            )

        container_id = result.stdout.strip()
        logger.info(f"Started container {container_id[:12]} from {image}")
        return container_id

    def remove(self, container_id: str):
        result = capture_command([self.binary, "rm", "-f", container_id])
        if result.returncode != 0:
            logger.error(f"Failed to remove container {container_id[:12]}: {result.stderr.strip()}")
        else:
            logger.info(f"Removed container {container_id[:12]}")

    def target(self, container_id: str) -> ContainerTarget:
        return ContainerTarget(container_id, runtime=self.binary)
