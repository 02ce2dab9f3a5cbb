"""
Environment provisioner - turns a suite topology into a live execution target.
"""

import asyncio
import logging
import re
import shlex
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, TextIO, Tuple

import yaml

from orchestrator.src.backends.docker import ContainerRuntime
from orchestrator.src.backends.openstack import CloudBackend
from orchestrator.src.backends.remote import HostTarget, Target
from orchestrator.src.config import Settings, get_settings
from orchestrator.src.errors import ProvisioningAborted, UserConfigurationError
from orchestrator.src.models.run import Node, RunContext
from orchestrator.src.models.suite import ClusterSpec, ContainerSpec, HostSpec, OstreeSpec
from orchestrator.src.services.teardown import (
    ClusterResource,
    ContainerResource,
    HostResource,
    TeardownManager,
)

logger = logging.getLogger(__name__)

# rpm-ostree exits with this when there is nothing to upgrade
OSTREE_UNCHANGED = 77

def cluster_env(hosts: Sequence[HostSpec], nodes: Sequence[Node]) -> Dict[str, str]:
    """RHCI_<name>_IP for every host, in host order."""
    env = {}
    for spec, node in zip(hosts, nodes):
        env[f"RHCI_{re.sub(r'[^A-Za-z0-9_]', '_', spec.name)}_IP"] = node.address
    return env

def build_user_data(public_key: str) -> str:
    """cloud-init config letting the node key in as root."""
    config = {
        "disable_root": False,
        "ssh_authorized_keys": [public_key],
    }
    return "#cloud-config\n" + yaml.safe_dump(config, default_flow_style=False)

def ensure_keypair(path: Path) -> Path:
    """Generate an SSH keypair at path unless one is already there."""
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Generating SSH keypair {path}")
        subprocess.run(
            ["ssh-keygen", "-q", "-t", "rsa", "-b", "4096", "-N", "", "-f", str(path)],
            check=True,
            capture_output=True,
        )
    return path

def parse_debug_node(value: str) -> Node:
    """'name=address' or a bare address."""
    name, sep, address = value.partition("=")
    if not sep:
        name, address = value, value
    return Node(name=name, address=address)

def is_atomic_host(target: Target) -> bool:
    return target.exec("test -f /run/ostree-booted") == 0

class Provisioner:
    def __init__(
        self,
        ctx: RunContext,
        teardown: TeardownManager,
        cloud: CloudBackend,
        containers: ContainerRuntime,
        host_target: Optional[Callable[[Node], HostTarget]] = None,
        output: Sequence[TextIO] = (),
        settings: Optional[Settings] = None,
    ):
        self.ctx = ctx
        self.teardown = teardown
        self.cloud = cloud
        self.containers = containers
        self.settings = settings or get_settings()
        self.host_target = host_target or self._default_host_target
        self.output = output

    def _default_host_target(self, node: Node) -> HostTarget:
        return HostTarget(node.address, key=self.settings.node_key, user=self.settings.ssh_user, name=node.name)

    def provision(self) -> Target:
        """Provision the suite's topology and set ctx.target."""
        suite = self.ctx.suite

        if suite.container is not None:
            resource = self.teardown.register(ContainerResource(self.containers))
            target = self.provision_container(suite.container, resource)
        elif suite.host is not None:
            _, target = self.provision_host(suite.host)
            self.ctx.host_targets = [target]
        else:
            target = self.provision_cluster(suite.cluster)

        self.ctx.target = target
        logger.info(f"Execution target is {target.name}")
        return target

    # ------------------ containers ------------------

    def provision_container(self, spec: ContainerSpec, resource: ContainerResource) -> Target:
        # pulled ahead of time so it doesn't count against the test timeout
        if not self.containers.pull(spec.image):
            raise UserConfigurationError(f"Could not pull image '{spec.image}'.")

        resource.container_id = self.containers.start(spec.image)
        return self.containers.target(resource.container_id)

    # ------------------ hosts ------------------

    def provision_host(self, spec: HostSpec, resource: Optional[HostResource] = None) -> Tuple[Node, HostTarget]:
        if self.settings.debug_use_node and not self.ctx.suite.is_cluster:
            node = parse_debug_node(self.settings.debug_use_node)
            logger.warning(f"Using pre-provisioned node {node.name} ({node.address})")
            target = self.host_target(node)
            target.wait_until_reachable(self.settings.ssh_wait_timeout)
        else:
            if resource is None:
                resource = self.teardown.register(HostResource(self.cloud))

            public_key = Path(self.settings.node_key + ".pub").read_text().strip()
            node = self.cloud.provision(
                image=spec.distro,
                user_data=build_user_data(public_key),
                name_prefix=self.settings.os_name_prefix,
            )
            resource.node = node

            target = self.host_target(node)
            target.wait_until_reachable(self.settings.ssh_wait_timeout)

        if spec.ostree is not None:
            if not is_atomic_host(target):
                raise ProvisioningAborted("Cannot specify 'ostree' on non-AH.")
            self.deploy_ostree(target, spec.ostree)

        return node, target

    def deploy_ostree(self, target: HostTarget, ostree: OstreeSpec):
        """Upgrade, rebase or deploy the requested tree, then reboot into it."""
        skip_reboot = False

        if not ostree.remote and not ostree.branch:
            if ostree.revision:
                returncode = target.exec(f"rpm-ostree deploy {shlex.quote(ostree.revision)}", output=self.output)
            else:
                returncode = target.exec("rpm-ostree upgrade --upgrade-unchanged-exit-77", output=self.output)

            if returncode == OSTREE_UNCHANGED:
                skip_reboot = True
            elif returncode != 0:
                raise ProvisioningAborted("Failed to upgrade or deploy.")
        else:
            refspec = ""
            if ostree.remote:
                target.check(
                    f"ostree remote add --if-not-exists --no-gpg-verify rhci {shlex.quote(ostree.remote)}",
                    output=self.output,
                )
                refspec = "rhci:"
            if ostree.branch:
                refspec += ostree.branch

            if target.exec(f"rpm-ostree rebase {shlex.quote(refspec)}", output=self.output) != 0:
                raise ProvisioningAborted("Failed to rebase onto refspec.")

            if ostree.revision:
                # rebase and deploy can't be done in one step
                target.reboot(self.settings.ssh_wait_timeout)
                if target.exec(f"rpm-ostree deploy {shlex.quote(ostree.revision)}", output=self.output) != 0:
                    raise ProvisioningAborted("Failed to deploy.")

        if not skip_reboot:
            target.reboot(self.settings.ssh_wait_timeout)

    # ------------------ clusters ------------------

    async def _provision_hosts(self, hosts: List[HostSpec], resources: List[HostResource]):
        return await asyncio.gather(
            *(asyncio.to_thread(self.provision_host, spec, res) for spec, res in zip(hosts, resources)),
            return_exceptions=True,
        )

    def provision_cluster(self, spec: ClusterSpec) -> Target:
        controller = ContainerResource(self.containers) if spec.container else None
        cluster = self.teardown.register(
            ClusterResource([HostResource(self.cloud) for _ in spec.hosts], controller)
        )

        logger.info(f"Provisioning {len(spec.hosts)} cluster hosts")
        results = asyncio.run(self._provision_hosts(spec.hosts, cluster.hosts))

        failures = [(h, r) for h, r in zip(spec.hosts, results) if isinstance(r, BaseException)]
        for host, error in failures:
            logger.error(f"Provisioning of cluster host {host.name} failed: {error}")
        for host, error in failures:
            if not isinstance(error, UserConfigurationError):
                raise error
        if failures:
            host, error = failures[0]
            raise ProvisioningAborted(f"Host '{host.name}': {error}")

        nodes = [node for node, _ in results]
        host_targets = [target for _, target in results]
        self.ctx.host_targets = host_targets

        if spec.container is not None:
            target = self.provision_container(spec.container, controller)
            self.setup_cluster_trust(target, spec.hosts, nodes, host_targets)
        else:
            target = host_targets[0]

        self.ctx.env.update(cluster_env(spec.hosts, nodes))
        return target

    def setup_cluster_trust(
        self,
        controller: Target,
        hosts: Sequence[HostSpec],
        nodes: Sequence[Node],
        host_targets: Sequence[Target],
    ):
        """Let the controller container ssh into every cluster host."""
        key = ensure_keypair(Path(self.settings.cache_dir) / "cluster_key")
        public_key = Path(f"{key}.pub").read_text().strip()

        controller.check("mkdir -p -m 0700 /root/.ssh", output=self.output)
        controller.copy(str(key), "/root/.ssh/id_rsa")
        controller.copy(f"{key}.pub", "/root/.ssh/id_rsa.pub")
        controller.check("chmod 0400 /root/.ssh/id_rsa", output=self.output)

        for spec, node, host in zip(hosts, nodes, host_targets):
            address = shlex.quote(node.address)
            controller.check(
                f"ssh-keyscan {address} >> /root/.ssh/known_hosts 2>/dev/null",
                output=self.output,
            )
            controller.check(
                f"echo {shlex.quote(f'{node.address} {spec.name}')} >> /etc/hosts",
                output=self.output,
            )
            host.check(
                f"mkdir -p -m 0700 /root/.ssh && echo {shlex.quote(public_key)} >> /root/.ssh/authorized_keys",
                output=self.output,
            )
