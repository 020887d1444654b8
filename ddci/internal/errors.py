class SetupError(Exception):
    """Raised when the intake connection cannot be configured."""


class ActiveTestMismatchError(RuntimeError):
    """Raised when a test is deactivated from a thread where it is not the active test."""
