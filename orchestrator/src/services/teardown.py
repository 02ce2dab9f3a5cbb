"""
Guaranteed release of provisioned resources.

Resources are registered with the TeardownManager before they are
provisioned and record their handles as provisioning progresses. Release
is idempotent and a no-op for anything that never got a handle, so the
manager can release everything it knows about on any exit path.
"""

import logging
import signal
from abc import ABC, abstractmethod
from contextlib import ExitStack
from typing import List, Optional

from orchestrator.src.backends.docker import ContainerRuntime
from orchestrator.src.backends.openstack import CloudBackend
from orchestrator.src.models.run import Node

logger = logging.getLogger(__name__)

class Resource(ABC):
    def __init__(self):
        self.released = False

    @property
    @abstractmethod
    def provisioned(self) -> bool:
        ...

    @abstractmethod
    def _release(self):
        ...

    def release(self):
        if self.released:
            return
        self.released = True

        if not self.provisioned:
            logger.debug(f"{self} was never provisioned, nothing to release")
            return
        self._release()

class ContainerResource(Resource):
    def __init__(self, runtime: ContainerRuntime):
        super().__init__()
        self.runtime = runtime
        self.container_id: Optional[str] = None

    @property
    def provisioned(self) -> bool:
        return bool(self.container_id)

    def _release(self):
        logger.info(f"Removing container {self.container_id[:12]}")
        self.runtime.remove(self.container_id)

    def __repr__(self):
        return f"ContainerResource({self.container_id!r})"

class HostResource(Resource):
    def __init__(self, cloud: CloudBackend):
        super().__init__()
        self.cloud = cloud
        self.node: Optional[Node] = None

    @property
    def provisioned(self) -> bool:
        return self.node is not None and bool(self.node.name)

    def _release(self):
        logger.info(f"Tearing down node {self.node.name}")
        self.cloud.teardown(self.node)

    def __repr__(self):
        return f"HostResource({self.node.name if self.node else None!r})"

class ClusterResource(Resource):
    """Hosts are released first, then the controller container."""

    def __init__(self, hosts: List[HostResource], controller: Optional[ContainerResource] = None):
        super().__init__()
        self.hosts = hosts
        self.controller = controller

    @property
    def provisioned(self) -> bool:
        if any(host.provisioned for host in self.hosts):
            return True
        return self.controller is not None and self.controller.provisioned

    def _release(self):
        errors = []
        for host in self.hosts:
            try:
                host.release()
            except Exception as e:
                logger.exception(f"Failed to release {host}")
                errors.append(e)
        if self.controller is not None:
            self.controller.release()
        if errors:
            raise errors[0]

    def __repr__(self):
        return f"ClusterResource({len(self.hosts)} hosts)"

class TeardownManager:
    """
    Releases every registered resource, most recent first, when the
    context exits for any reason.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._stack = ExitStack()

    def register(self, resource: Resource) -> Resource:
        self._stack.callback(self._release, resource)
        return resource

    def _release(self, resource: Resource):
        if not self.enabled:
            if resource.provisioned:
                logger.warning(f"Teardown disabled, leaving {resource} running")
            return
        resource.release()

    def close(self):
        self._stack.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

def _raise_exit(signum, frame):
    raise SystemExit(128 + signum)

def install_signal_handlers():
    """Turn termination signals into SystemExit so cleanup runs."""
    for signum in (signal.SIGTERM, signal.SIGHUP):
        signal.signal(signum, _raise_exit)
