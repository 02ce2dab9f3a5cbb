"""
Pytest fixtures and fakes for orchestrator tests.
"""

import posixpath
import shlex
import threading
from pathlib import Path

import pytest

from orchestrator.src.backends.remote import HostTarget, Target
from orchestrator.src.config import Settings
from orchestrator.src.errors import ProvisioningAborted
from orchestrator.src.models.run import Node, RunContext
from orchestrator.src.models.suite import SuiteConfig

class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

class FakeTarget(Target):
    """
    Records commands instead of running them. `responses` maps a command
    substring to a return code or to a callable taking the timeout.
    """

    def __init__(self, name="fake", responses=None, files=()):
        self.name = name
        self.responses = responses or {}
        self.files = set(files)
        self.commands = []
        self.timeouts = []
        self.envs = []
        self.copies = []
        self.fetches = []
        self.closed = False

    def exec(self, command, timeout=None, output=(), env=None, workdir=None):
        self.commands.append(command)
        self.timeouts.append(timeout)
        self.envs.append(env)

        if command.startswith("test -e "):
            return 0 if shlex.split(command)[2] in self.files else 1

        returncode = 0
        for pattern, response in self.responses.items():
            if pattern in command:
                returncode = response(timeout) if callable(response) else response
                break

        for sink in output:
            sink.write(f"ran {command}\n")
        return returncode

    def run_argv(self, remote_argv, timeout=None, output=()):
        return 0

    def write_file(self, path, content, timeout=None):
        pass

    def close(self):
        self.closed = True

    def copy(self, src, dest):
        self.copies.append((src, dest))

    def fetch(self, src, dest_dir):
        self.fetches.append((src, dest_dir))
        Path(dest_dir, posixpath.basename(src.rstrip("/"))).write_text("artifact\n")

class FakeHostTarget(FakeTarget, HostTarget):
    def __init__(self, node: Node, **kwargs):
        FakeTarget.__init__(self, name=node.name, **kwargs)
        self.address = node.address
        self.reboots = 0

    def wait_until_reachable(self, timeout=300, interval=5):
        pass

    def reboot(self, timeout=300):
        self.reboots += 1

class FakeCloud:
    def __init__(self, bad_images=(), broken_images=()):
        self.bad_images = set(bad_images)
        self.broken_images = set(broken_images)
        self.provisioned = []
        self.torn_down = []
        self._lock = threading.Lock()

    def provision(self, image, user_data, name_prefix):
        if image in self.bad_images:
            raise ProvisioningAborted(f"Distro '{image}' is not available.")
        if image in self.broken_images:
            raise RuntimeError("cloud API is down")
        with self._lock:
            n = len(self.provisioned) + 1
            node = Node(name=f"{name_prefix}-{n}", address=f"10.0.0.{n}")
            self.provisioned.append(node)
        return node

    def teardown(self, node):
        with self._lock:
            self.torn_down.append(node)

class FakeContainers:
    def __init__(self, bad_images=()):
        self.bad_images = set(bad_images)
        self.started = []
        self.removed = []
        self.targets = {}

    def pull(self, image):
        return image not in self.bad_images

    def start(self, image):
        container_id = f"cid{len(self.started) + 1}"
        self.started.append(container_id)
        return container_id

    def remove(self, container_id):
        self.removed.append(container_id)

    def target(self, container_id):
        target = FakeTarget(name=container_id)
        self.targets[container_id] = target
        return target

class FakeNotifier:
    def __init__(self):
        self.reports = []

    def send(self, report):
        self.reports.append(report)

@pytest.fixture
def settings(tmp_path):
    key = tmp_path / "node_key"
    key.write_text("PRIVATE")
    Path(f"{key}.pub").write_text("ssh-rsa NODEKEY")

    cache = tmp_path / "cache"
    cache.mkdir()
    (cache / "cluster_key").write_text("PRIVATE")
    (cache / "cluster_key.pub").write_text("ssh-rsa CLUSTERKEY")

    return Settings(
        node_key=str(key),
        cache_dir=str(cache),
        ssh_wait_timeout=1,
        makecache_attempts=5,
        debug_use_node="",
        debug_no_teardown=False,
        s3_prefix="",
        _env_file=None,
    )

@pytest.fixture
def make_ctx(tmp_path):
    def _make(suite: SuiteConfig) -> RunContext:
        checkout = tmp_path / "checkout"
        checkout.mkdir(exist_ok=True)
        state = tmp_path / "state"
        state.mkdir(exist_ok=True)
        ctx = RunContext(suite=suite, suite_index=0, state_dir=state, checkout_dir=checkout)
        ctx.upload_dir.mkdir(parents=True, exist_ok=True)
        return ctx
    return _make
