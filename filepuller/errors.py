"""
Exception hierarchy for the file puller.

Startup failures carry the exit code of the stage that failed. Per-message
failures carry the object key so they can be logged against it.
"""

from filepuller.constants import ExitCode


class FilePullerError(Exception):
    """Base exception for file puller operations."""

    pass


class ProvisioningError(FilePullerError):
    """Raised when a startup stage (TLS, connect, topology) fails."""

    def __init__(self, stage: str, exit_code: ExitCode, message: str):
        self.stage = stage
        self.exit_code = exit_code
        self.message = message
        super().__init__(f"{stage}: {message}")


class UnsafeKeyError(FilePullerError):
    """Raised when an object key cannot be mapped to a destination path."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Unsafe object key {key!r}: {reason}")


class RetrievalError(FilePullerError):
    """Raised when an object could not be written to its destination."""

    def __init__(self, key: str, message: str):
        self.key = key
        self.message = message
        super().__init__(f"Unable to retrieve {key!r}: {message}")


class ConsumptionError(FilePullerError):
    """Raised when the subscription itself fails, as opposed to one message."""

    pass
