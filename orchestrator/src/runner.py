"""
Suite runner - drives one test suite from provisioning to the final status.
"""

import logging
import sys
import time
from typing import Callable, Optional, TextIO

from orchestrator.src.backends.docker import ContainerRuntime
from orchestrator.src.backends.openstack import CloudBackend
from orchestrator.src.config import Settings, get_settings
from orchestrator.src.errors import UserConfigurationError
from orchestrator.src.models.run import RunContext
from orchestrator.src.services.artifact_collector import collect_artifacts
from orchestrator.src.services.executor import run_pipeline
from orchestrator.src.services.prepare import environment_targets, prepare_environment
from orchestrator.src.services.provisioner import Provisioner
from orchestrator.src.services.publisher import publish
from orchestrator.src.services.status_reporter import StatusReporter
from orchestrator.src.services.teardown import TeardownManager

logger = logging.getLogger(__name__)

def provision_and_prepare(ctx: RunContext, provisioner: Provisioner, reporter: StatusReporter, attempts: int):
    """Provision the topology and prepare it, logging into setup.log."""
    with open(ctx.setup_log, "a") as setup_log:
        provisioner.output = [setup_log]
        reporter.pending("Provisioning host...")
        provisioner.provision()
        prepare_environment(ctx, output=[setup_log], attempts=attempts)

    if ctx.setup_log.stat().st_size == 0:
        ctx.setup_log.unlink()

def run_suite(
    ctx: RunContext,
    reporter: StatusReporter,
    cloud: CloudBackend,
    containers: ContainerRuntime,
    host_target: Optional[Callable] = None,
    no_teardown: Optional[bool] = None,
    s3_prefix: Optional[str] = None,
    clock: Callable[[], float] = time.monotonic,
    echo: Optional[TextIO] = sys.stdout,
    settings: Optional[Settings] = None,
) -> int:
    """
    Run one suite. User errors are reported and end the run cleanly;
    anything unexpected is reported as a generic error and re-raised.
    Provisioned resources are released on every path.
    """
    settings = settings or get_settings()
    if no_teardown is None:
        no_teardown = settings.debug_no_teardown

    ctx.upload_dir.mkdir(parents=True, exist_ok=True)

    with TeardownManager(enabled=not no_teardown) as teardown:
        try:
            provisioner = Provisioner(ctx, teardown, cloud, containers, host_target=host_target, settings=settings)
            provision_and_prepare(ctx, provisioner, reporter, settings.makecache_attempts)

            result = run_pipeline(ctx, reporter, clock=clock, echo=echo)

            collect_artifacts(ctx)
            url = publish(
                ctx,
                s3_prefix=settings.s3_prefix if s3_prefix is None else s3_prefix,
                repo=settings.github_repo,
                commit=settings.github_commit,
            )
            reporter.finish(result, url=url, merge_verified=ctx.merge_verified)

        except UserConfigurationError as e:
            logger.warning(f"Suite '{ctx.suite.context}' cannot run: {e}")
            reporter.error(str(e))

        except BaseException:
            logger.exception(f"Internal error while running suite '{ctx.suite.context}'")
            try:
                reporter.internal_error()
            except Exception:
                logger.exception("Failed to report internal error")
            raise

        finally:
            for target in environment_targets(ctx):
                target.close()

    return 0
