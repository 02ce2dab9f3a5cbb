"""
Test suite records, as resolved from the suite file.
"""

from pydantic import BaseModel
from typing import List, Optional, Dict, Any

DEFAULT_CONTEXT = "Red Hat CI"
DEFAULT_TIMEOUT = 2 * 60 * 60  # also the maximum

class OstreeSpec(BaseModel):
    remote: Optional[str] = None
    branch: Optional[str] = None
    revision: Optional[str] = None

class HostSpec(BaseModel):
    distro: str
    name: Optional[str] = None  # only set for cluster hosts
    ostree: Optional[OstreeSpec] = None

class ContainerSpec(BaseModel):
    image: str

class ClusterSpec(BaseModel):
    hosts: List[HostSpec]
    container: Optional[ContainerSpec] = None

class ExtraRepo(BaseModel):
    name: str
    options: Dict[str, Any] = {}

class BuildSpec(BaseModel):
    config_opts: str = ""
    build_opts: str = ""
    install_opts: str = ""

class SuiteConfig(BaseModel):
    context: str = DEFAULT_CONTEXT
    branches: List[str] = ["master"]
    required: bool = False

    host: Optional[HostSpec] = None
    container: Optional[ContainerSpec] = None
    cluster: Optional[ClusterSpec] = None

    extra_repos: List[ExtraRepo] = []
    packages: List[str] = []
    env: Dict[str, str] = {}

    build: Optional[BuildSpec] = None
    tests: List[str] = []
    timeout: int = DEFAULT_TIMEOUT  # seconds
    artifacts: List[str] = []

    @property
    def is_cluster(self) -> bool:
        return self.cluster is not None

    @property
    def container_controlled(self) -> bool:
        """True when build/test commands run inside a container."""
        if self.container is not None:
            return True
        return self.cluster is not None and self.cluster.container is not None
