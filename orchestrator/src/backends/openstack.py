"""
Cloud provisioning backend driving the openstack CLI.
"""

import json
import logging
import os
import tempfile
import uuid
from typing import Any, Dict, List, Optional, Protocol

from orchestrator.src.backends.remote import capture_command
from orchestrator.src.errors import ProvisioningAborted, RemoteCommandError
from orchestrator.src.models.run import Node

logger = logging.getLogger(__name__)

class CloudBackend(Protocol):
    def provision(self, image: str, user_data: str, name_prefix: str) -> Node:
        """Boot a node and return it once it has an address."""
        ...

    def teardown(self, node: Node):
        """Release the node's floating IP, then delete the node."""
        ...

def parse_addresses(addresses: Any) -> List[str]:
    """
    Extract IPs from a server's 'addresses' field, which is either a
    {network: [ip, ...]} mapping or a 'net=ip1, ip2; net2=ip3' string.
    """
    ips = []
    if isinstance(addresses, dict):
        for values in addresses.values():
            for value in values:
                ips.append(value["addr"] if isinstance(value, dict) else value)
    elif isinstance(addresses, str):
        for network in addresses.split(";"):
            _, _, values = network.partition("=")
            ips.extend(ip.strip() for ip in values.split(",") if ip.strip())
    return ips

class OpenStackBackend:
    def __init__(
        self,
        flavor: str,
        keyname: str = "",
        network: str = "",
        floating_ip_pool: str = "",
        binary: str = "openstack",
    ):
        self.flavor = flavor
        self.keyname = keyname
        self.network = network
        self.floating_ip_pool = floating_ip_pool
        self.binary = binary

    def _run(self, *args: str) -> str:
        result = capture_command([self.binary] + list(args))
        if result.returncode != 0:
            raise RemoteCommandError(
                f"openstack {' '.join(args[:3])} failed: {result.stderr.strip()}",
                result.returncode,
            )
        return result.stdout

    def _json(self, *args: str) -> Dict[str, Any]:
        return json.loads(self._run(*args, "-f", "json"))

    def provision(self, image: str, user_data: str, name_prefix: str) -> Node:
        if capture_command([self.binary, "image", "show", image, "-f", "json"]).returncode != 0:
            raise ProvisioningAborted(f"Distro '{image}' is not available.")

        name = f"{name_prefix}-{uuid.uuid4().hex[:8]}"

        with tempfile.NamedTemporaryFile("w", prefix="user-data-", delete=False) as f:
            f.write(user_data)
            user_data_path = f.name

        args = ["server", "create", "--image", image, "--flavor", self.flavor, "--user-data", user_data_path]
        if self.keyname:
            args += ["--key-name", self.keyname]
        if self.network:
            args += ["--network", self.network]

        logger.info(f"Creating server {name} from {image}")
        floating_ip = None

        # a failed create can still leave the server behind (ERROR state,
        # wait timeout), so everything from here on cleans up by name
        try:
            try:
                server = self._json(*args, "--wait", name)
            finally:
                os.unlink(user_data_path)

            ips = parse_addresses(server.get("addresses"))
            if self.floating_ip_pool:
                floating_ip = self._json("floating", "ip", "create", self.floating_ip_pool)["floating_ip_address"]
                self._run("server", "add", "floating", "ip", name, floating_ip)
                address = floating_ip
            elif ips:
                address = ips[0]
            else:
                raise RemoteCommandError(f"Server {name} has no address")
        except BaseException:
            self.teardown(Node(name=name, address="", floating_ip=floating_ip))
            raise

        logger.info(f"Server {name} is up at {address}")
        return Node(name=name, address=address, floating_ip=floating_ip)

    def teardown(self, node: Node):
        if node.floating_ip:
            for args in (
                ["server", "remove", "floating", "ip", node.name, node.floating_ip],
                ["floating", "ip", "delete", node.floating_ip],
            ):
                result = capture_command([self.binary] + args)
                if result.returncode != 0:
                    logger.error(f"openstack {' '.join(args[:4])} failed: {result.stderr.strip()}")

        result = capture_command([self.binary, "server", "delete", "--wait", node.name])
        if result.returncode != 0:
            logger.error(f"Failed to delete server {node.name}: {result.stderr.strip()}")
        else:
            logger.info(f"Deleted server {node.name}")
