"""
Tank sync error taxonomy.

Steady-state errors (SourceUnavailable, PersistenceError, MalformedRecord) are
recovered locally by the orchestrator. Only StartupConnectivityError ends the
process.
"""


class TankSyncError(Exception):
    """Base class for all tank sync errors"""

    pass


class SourceUnavailable(TankSyncError):
    """Upstream tank server could not be reached or returned a bad response"""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(TankSyncError):
    """A retention store operation failed"""

    pass


class StartupConnectivityError(TankSyncError):
    """Upstream or store unreachable at startup"""

    pass


class MalformedRecord(TankSyncError):
    """A single upstream record failed normalization"""

    pass
