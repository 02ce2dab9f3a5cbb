from orchestrator.src.services.executor import run_pipeline, run_phase, build_commands
from orchestrator.src.services.artifact_collector import collect_artifacts
from orchestrator.src.services.publisher import publish, reference_name
from orchestrator.src.services.provisioner import Provisioner
from orchestrator.src.services.prepare import prepare_environment
from orchestrator.src.services.status_reporter import StatusReporter, terminal_report
from orchestrator.src.services.suite_parser import (
    parse_suite_file,
    load_suite_file,
    suite_applies,
)
from orchestrator.src.services.teardown import TeardownManager

__all__ = [
    "run_pipeline",
    "run_phase",
    "build_commands",
    "collect_artifacts",
    "publish",
    "reference_name",
    "Provisioner",
    "prepare_environment",
    "StatusReporter",
    "terminal_report",
    "parse_suite_file",
    "load_suite_file",
    "suite_applies",
    "TeardownManager",
]
