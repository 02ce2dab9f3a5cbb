"""
Orchestrator errors.
"""

class OrchestratorError(Exception):
    """Base exception for all orchestrator errors."""
    pass

class SuiteConfigError(OrchestratorError):
    """Raised when the test suite file is invalid."""
    pass

class UserConfigurationError(OrchestratorError):
    """
    The test suite asked for something that cannot be done (bad image,
    bad ostree revision, uninstallable packages). Reported to the notifier
    and the run ends cleanly.
    """
    pass

class ProvisioningAborted(UserConfigurationError):
    """A user-attributable failure signalled by the cloud backend."""
    pass

class RemoteCommandError(OrchestratorError):
    """An infrastructure command that must succeed did not."""

    def __init__(self, message: str, returncode: int = 1):
        super().__init__(message)
        self.returncode = returncode
