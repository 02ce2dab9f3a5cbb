"""
Test suite orchestrator - Main entry point.
"""

import logging
import sys
from pathlib import Path

from orchestrator.src.backends.docker import ContainerRuntime
from orchestrator.src.backends.openstack import OpenStackBackend
from orchestrator.src.config import Settings, get_settings
from orchestrator.src.errors import SuiteConfigError
from orchestrator.src.models.run import RunContext
from orchestrator.src.models.suite import DEFAULT_CONTEXT
from orchestrator.src.runner import run_suite
from orchestrator.src.services.github import GitHubNotifier, verify_merge_commit
from orchestrator.src.services.status_reporter import StatusReporter
from orchestrator.src.services.suite_parser import load_suite_file, suite_applies
from orchestrator.src.services.teardown import install_signal_handlers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

def main() -> int:
    """Main entry point."""
    settings = get_settings()
    install_signal_handlers()

    logger.info(f"Testing {settings.github_repo}@{settings.github_commit} (suite {settings.suite_index})")

    # renamed to the suite's context once it is known
    reporter = StatusReporter(GitHubNotifier(), DEFAULT_CONTEXT)

    try:
        return run(settings, reporter)
    except BaseException:
        if reporter.terminal is None:
            logger.exception("Internal error before the suite could finish")
        try:
            reporter.internal_error()
        except Exception:
            logger.exception("Failed to report internal error")
        raise

def run(settings: Settings, reporter: StatusReporter) -> int:
    """Select the suite to run and hand it to the runner."""
    checkout = Path(settings.checkout_dir)

    try:
        suites = load_suite_file(checkout / settings.suite_file)
    except SuiteConfigError as e:
        logger.error(f"Invalid suite file: {e}")
        reporter.error(f"Invalid suite file: {e}")
        return 0

    if settings.suite_index >= len(suites):
        logger.error(f"Suite index {settings.suite_index} out of range ({len(suites)} suites)")
        return 1

    suite = suites[settings.suite_index]
    if not suite_applies(suite, settings.github_branch, settings.github_pull_id):
        logger.info(f"Suite '{suite.context}' does not run on branch {settings.github_branch}")
        return 0

    reporter.context = suite.context

    ctx = RunContext(
        suite=suite,
        suite_index=settings.suite_index,
        state_dir=Path(settings.state_dir) / f"suite-{settings.suite_index}",
        checkout_dir=checkout,
        remote_checkout_dir=settings.remote_checkout_dir,
    )
    ctx.state_dir.mkdir(parents=True, exist_ok=True)

    if settings.github_pull_id:
        ctx.merge_verified = verify_merge_commit(checkout, settings.github_commit, settings.github_pull_head)

    cloud = OpenStackBackend(
        flavor=settings.os_flavor,
        keyname=settings.os_keyname,
        network=settings.os_network,
        floating_ip_pool=settings.os_floating_ip_pool,
    )
    containers = ContainerRuntime(settings.container_runtime)

    return run_suite(ctx, reporter, cloud, containers, settings=settings)

if __name__ == "__main__":
    sys.exit(main())
