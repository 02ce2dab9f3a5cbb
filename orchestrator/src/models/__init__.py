from orchestrator.src.models.suite import (
    OstreeSpec,
    HostSpec,
    ContainerSpec,
    ClusterSpec,
    ExtraRepo,
    BuildSpec,
    SuiteConfig,
)
from orchestrator.src.models.run import (
    Node,
    Outcome,
    RunResult,
    StatusState,
    StatusReport,
    PhaseSpec,
    DeadlineBudget,
    RunContext,
    TIMEOUT_RC,
    KILLED_RC,
)

__all__ = [
    "OstreeSpec",
    "HostSpec",
    "ContainerSpec",
    "ClusterSpec",
    "ExtraRepo",
    "BuildSpec",
    "SuiteConfig",
    "Node",
    "Outcome",
    "RunResult",
    "StatusState",
    "StatusReport",
    "PhaseSpec",
    "DeadlineBudget",
    "RunContext",
    "TIMEOUT_RC",
    "KILLED_RC",
]
