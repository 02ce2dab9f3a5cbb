"""
Prepare provisioned environments: extra repos, packages, the checkout.
"""

import logging
import shlex
from pathlib import Path
from typing import List, Optional, Sequence, TextIO

from orchestrator.src.backends.remote import HostTarget, Target
from orchestrator.src.config import get_settings
from orchestrator.src.errors import UserConfigurationError
from orchestrator.src.models.run import RunContext
from orchestrator.src.models.suite import ExtraRepo
from orchestrator.src.services.provisioner import is_atomic_host

logger = logging.getLogger(__name__)

REPO_FILE = "rhci-extras.repo"

def render_repo_file(repos: Sequence[ExtraRepo]) -> str:
    sections = []
    for repo in repos:
        lines = [f"[{repo.name}]", f"name={repo.name}"]
        for key, value in repo.options.items():
            lines.append(f"{key}={value}")
        sections.append("\n".join(lines))
    return "\n\n".join(sections) + "\n"

def detect_package_manager(target: Target) -> str:
    return "dnf" if target.exec("rpm -q dnf") == 0 else "yum"

def refresh_package_cache(target: Target, manager: str, attempts: int, output: Sequence[TextIO] = ()) -> bool:
    """Try a few times to refresh metadata; upstream mirrors are flaky."""
    for attempt in range(1, attempts + 1):
        if target.exec(f"{manager} makecache", output=output) == 0:
            return True
        logger.warning(f"{manager} makecache failed on {target.name} (attempt {attempt}/{attempts})")
    logger.warning(f"Continuing without a fresh {manager} cache on {target.name}")
    return False

def install_packages(
    target: Target,
    packages: Sequence[str],
    output: Sequence[TextIO] = (),
    attempts: Optional[int] = None,
):
    pkgs = " ".join(shlex.quote(p) for p in packages)

    if isinstance(target, HostTarget) and is_atomic_host(target):
        logger.info(f"Layering packages on {target.name}: {pkgs}")
        if target.exec(f"rpm-ostree install {pkgs}", output=output) != 0:
            raise UserConfigurationError("Could not layer packages.")
        target.reboot(get_settings().ssh_wait_timeout)
        return

    manager = detect_package_manager(target)
    refresh_package_cache(target, manager, attempts or get_settings().makecache_attempts, output)

    logger.info(f"Installing packages on {target.name}: {pkgs}")
    if target.exec(f"{manager} install -y {pkgs}", output=output) != 0:
        raise UserConfigurationError("Could not install required packages.")

def environment_targets(ctx: RunContext) -> List[Target]:
    """Every environment that gets repos and packages."""
    targets = list(ctx.host_targets)
    if ctx.target is not None and all(ctx.target is not t for t in targets):
        targets.append(ctx.target)
    return targets

def prepare_environment(ctx: RunContext, output: Sequence[TextIO] = (), attempts: Optional[int] = None):
    """Inject repos, install packages and push the checkout to the target."""
    suite = ctx.suite

    repo_file = None
    if suite.extra_repos:
        repo_file = ctx.state_dir / REPO_FILE
        repo_file.write_text(render_repo_file(suite.extra_repos))

    for target in environment_targets(ctx):
        if repo_file is not None:
            target.check("mkdir -p /etc/yum.repos.d", output=output)
            target.copy(str(repo_file), f"/etc/yum.repos.d/{REPO_FILE}")
        if suite.packages:
            install_packages(target, suite.packages, output, attempts)

    push_checkout(ctx.target, ctx.checkout_dir, ctx.remote_checkout_dir, output)

def push_checkout(target: Target, checkout_dir: Path, remote_dir: str, output: Sequence[TextIO] = ()):
    logger.info(f"Copying {checkout_dir} to {target.name}:{remote_dir}")
    target.check(f"mkdir -p {shlex.quote(remote_dir)}", output=output)
    target.copy(str(checkout_dir), remote_dir)
