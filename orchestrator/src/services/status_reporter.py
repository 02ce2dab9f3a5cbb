"""
Report run status transitions to the commit-status notifier.
"""

import logging
from typing import List, Optional, Protocol

from orchestrator.src.models.run import RunResult, StatusReport, StatusState

logger = logging.getLogger(__name__)

class Notifier(Protocol):
    def send(self, report: StatusReport):
        ...

def terminal_report(
    context: str,
    result: RunResult,
    url: Optional[str] = None,
    merge_verified: bool = True,
) -> StatusReport:
    """Map a pipeline result to the final status."""
    if result.is_timeout:
        state = StatusState.FAILURE
        description = "Test timed out and was aborted."
    elif not result.ok:
        state = StatusState.FAILURE
        description = f"Test failed with rc {result.returncode}."
    else:
        state = StatusState.SUCCESS
        description = "All tests passed"
        if not merge_verified:
            description += ", but merge commit could not be tested"
        description += "."

    return StatusReport(context=context, state=state, description=description, url=url)

class StatusReporter:
    """
    Sends pending updates while the run progresses and exactly one
    terminal update. Anything sent after the terminal update is dropped.
    """

    def __init__(self, notifier: Notifier, context: str):
        self.notifier = notifier
        self.context = context
        self.sent: List[StatusReport] = []
        self.terminal: Optional[StatusReport] = None

    def _send(self, report: StatusReport):
        if self.terminal is not None:
            logger.warning(
                f"Dropping {report.state.value} update, already reported {self.terminal.state.value}"
            )
            return

        self.notifier.send(report)
        self.sent.append(report)

        if report.state != StatusState.PENDING:
            self.terminal = report

    def pending(self, description: str):
        self._send(StatusReport(context=self.context, state=StatusState.PENDING, description=description))

    def error(self, description: str, url: Optional[str] = None):
        self._send(StatusReport(
            context=self.context,
            state=StatusState.ERROR,
            description=description,
            url=url,
        ))

    def internal_error(self):
        self.error("An internal error occurred.")

    def finish(self, result: RunResult, url: Optional[str] = None, merge_verified: bool = True):
        self._send(terminal_report(self.context, result, url, merge_verified))
