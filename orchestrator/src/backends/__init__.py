from orchestrator.src.backends.remote import (
    Target,
    ContainerTarget,
    HostTarget,
    run_command,
    capture_command,
)
from orchestrator.src.backends.script_builder import (
    build_script,
    build_script_path,
    build_invocation,
)
from orchestrator.src.backends.docker import ContainerRuntime
from orchestrator.src.backends.openstack import (
    CloudBackend,
    OpenStackBackend,
    parse_addresses,
)

__all__ = [
    "Target",
    "ContainerTarget",
    "HostTarget",
    "run_command",
    "capture_command",
    "build_script",
    "build_script_path",
    "build_invocation",
    "ContainerRuntime",
    "CloudBackend",
    "OpenStackBackend",
    "parse_addresses",
]
