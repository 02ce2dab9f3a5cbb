"""
Phase executor - runs build and test command lines against a shared deadline.
"""

import logging
import sys
import time
from pathlib import Path
from typing import Callable, List, Optional, TextIO

from orchestrator.src.backends.remote import Target
from orchestrator.src.models.run import (
    DeadlineBudget,
    Outcome,
    PhaseSpec,
    RunContext,
    RunResult,
)
from orchestrator.src.models.suite import BuildSpec

logger = logging.getLogger(__name__)

def build_commands(build: BuildSpec) -> List[str]:
    """Command lines for a project following the Build API conventions."""
    config_opts = f" {build.config_opts}" if build.config_opts else ""
    build_opts = f" {build.build_opts}" if build.build_opts else ""
    install_opts = f" {build.install_opts}" if build.install_opts else ""

    return [
        "if [ -x autogen.sh ]; then NOCONFIGURE=1 ./autogen.sh; fi",
        f"./configure --prefix=/usr --libdir=/usr/lib64{config_opts}",
        f"make all --jobs $(getconf _NPROCESSORS_ONLN){build_opts}",
        f"make install{install_opts}",
    ]

def build_phase(ctx: RunContext) -> Optional[PhaseSpec]:
    if ctx.suite.build is None:
        return None
    return PhaseSpec(
        name="build",
        log_name="build.log",
        commands=build_commands(ctx.suite.build),
        env=ctx.phase_env(),
    )

def test_phase(ctx: RunContext) -> Optional[PhaseSpec]:
    if not ctx.suite.tests:
        return None
    return PhaseSpec(
        name="test",
        log_name="output.log",
        commands=ctx.suite.tests,
        env=ctx.phase_env(),
    )

def _trailer(result: RunResult, elapsed: int) -> str:
    if result.outcome == Outcome.SUCCESS:
        return f"### COMPLETED IN {elapsed}s"
    if result.outcome == Outcome.KILLED:
        return f"### TIMED OUT AFTER {elapsed}s"
    return f"### EXITED WITH CODE {result.returncode} AFTER {elapsed}s"

def run_phase(
    target: Target,
    phase: PhaseSpec,
    budget: DeadlineBudget,
    log_path: Path,
    workdir: str,
    echo: Optional[TextIO] = None,
) -> RunResult:
    """
    Run the phase's command lines in order. Stops at the first failure, or
    before starting a command once the budget is gone.
    """
    sinks = [echo] if echo is not None else []

    with open(log_path, "a") as log:
        for i, command in enumerate(phase.commands):
            remaining = budget.remaining()
            if remaining <= 0:
                logger.error(f"{phase.name} phase out of time before command {i}")
                log.write("### TIMED OUT\n")
                return RunResult.timed_out()

            logger.info(f"[{phase.name} {i + 1}/{len(phase.commands)}] {command}")
            log.write(f"### {command}\n")
            log.flush()

            started = budget.clock()
            returncode = target.exec(
                command,
                timeout=remaining,
                output=[log] + sinks,
                env=phase.env,
                workdir=workdir,
            )
            elapsed = int(budget.clock() - started)

            result = RunResult.from_returncode(returncode)
            log.write(_trailer(result, elapsed) + "\n")
            log.flush()

            if not result.ok:
                logger.error(f"{phase.name} phase stopped: '{command}' exited with {returncode}")
                return result

    return RunResult.success()

def run_pipeline(
    ctx: RunContext,
    reporter,
    clock: Callable[[], float] = time.monotonic,
    echo: Optional[TextIO] = sys.stdout,
) -> RunResult:
    """
    Build, then test, sharing one deadline. The test phase is skipped if
    the build did not succeed.
    """
    ctx.budget = DeadlineBudget.start(ctx.suite.timeout, clock)
    result = RunResult.success()

    build = build_phase(ctx)
    if build is not None:
        reporter.pending("Building...")
        result = run_phase(ctx.target, build, ctx.budget, ctx.build_log, ctx.remote_checkout_dir, echo)

    tests = test_phase(ctx)
    if result.ok and tests is not None:
        reporter.pending("Running tests...")
        result = run_phase(ctx.target, tests, ctx.budget, ctx.output_log, ctx.remote_checkout_dir, echo)

    logger.info(f"Pipeline finished: {result.outcome.value} (rc={result.returncode})")
    return result
