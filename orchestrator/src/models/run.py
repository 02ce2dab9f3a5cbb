"""
Run-time models shared by the orchestration stages.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from orchestrator.src.models.suite import SuiteConfig

# Return codes seen from remote commands
TIMEOUT_RC = 124  # budget exhausted before a command could start
KILLED_RC = 137  # 128 + SIGKILL, killed on a hard per-call timeout

class Node(BaseModel):
    name: str
    address: str
    floating_ip: Optional[str] = None

    model_config = {"frozen": True}

class Outcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    KILLED = "killed"

class RunResult(BaseModel):
    outcome: Outcome
    returncode: int

    @classmethod
    def from_returncode(cls, returncode: int) -> "RunResult":
        if returncode == 0:
            outcome = Outcome.SUCCESS
        elif returncode == TIMEOUT_RC:
            outcome = Outcome.TIMED_OUT
        elif returncode == KILLED_RC:
            outcome = Outcome.KILLED
        else:
            outcome = Outcome.FAILED
        return cls(outcome=outcome, returncode=returncode)

    @classmethod
    def success(cls) -> "RunResult":
        return cls(outcome=Outcome.SUCCESS, returncode=0)

    @classmethod
    def timed_out(cls) -> "RunResult":
        return cls(outcome=Outcome.TIMED_OUT, returncode=TIMEOUT_RC)

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    @property
    def is_timeout(self) -> bool:
        return self.outcome in (Outcome.TIMED_OUT, Outcome.KILLED)

class StatusState(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"

class StatusReport(BaseModel):
    context: str
    state: StatusState
    description: str
    url: Optional[str] = None

class PhaseSpec(BaseModel):
    name: str
    log_name: str
    commands: List[str]
    env: Dict[str, str] = {}

class DeadlineBudget:
    """
    Absolute deadline shared by the build and test phases.
    """

    def __init__(self, deadline: float, clock: Callable[[], float] = time.monotonic):
        self.deadline = deadline
        self.clock = clock

    @classmethod
    def start(cls, timeout: float, clock: Callable[[], float] = time.monotonic) -> "DeadlineBudget":
        return cls(clock() + timeout, clock)

    def remaining(self) -> float:
        return self.deadline - self.clock()

@dataclass
class RunContext:
    """Everything one suite run needs, passed explicitly between stages."""

    suite: SuiteConfig
    suite_index: int
    state_dir: Path
    checkout_dir: Path
    remote_checkout_dir: str = "/var/tmp/checkout"
    env: Dict[str, str] = field(default_factory=dict)
    target: Optional[Any] = None  # backends.remote.Target
    host_targets: List[Any] = field(default_factory=list)
    budget: Optional[DeadlineBudget] = None
    merge_verified: bool = True

    @property
    def upload_dir(self) -> Path:
        return self.state_dir / "upload"

    @property
    def setup_log(self) -> Path:
        return self.upload_dir / "setup.log"

    @property
    def build_log(self) -> Path:
        return self.upload_dir / "build.log"

    @property
    def output_log(self) -> Path:
        return self.upload_dir / "output.log"

    @property
    def artifacts_dir(self) -> Path:
        return self.upload_dir / "artifacts"

    def phase_env(self) -> Dict[str, str]:
        env = dict(self.suite.env)
        env.update(self.env)
        return env
