"""
Error kinds surfaced by every command.
Each kind maps to its own non-zero process exit code.
"""


class RunetimeError(Exception):
    """Base class for all errors reported at the command boundary."""
    kind = "Error"
    exit_code = 1
    retryable = False


class InvalidArgumentError(RunetimeError):
    """Malformed command input (bad integer, unparseable timestamp, non-finite float)."""
    kind = "InvalidArgument"
    exit_code = 2


class ConflictError(RunetimeError):
    """A reading with the same (sensor_id, timestamp) already exists."""
    kind = "Conflict"
    exit_code = 3


class UnavailableError(RunetimeError):
    """The store could not be reached or refused the operation."""
    kind = "Unavailable"
    exit_code = 4
    retryable = True


class DimensionMismatchError(RunetimeError):
    kind = "DimensionMismatch"
    exit_code = 5


class NotInitializedError(RunetimeError):
    kind = "NotInitialized"
    exit_code = 6


class InitializationFailedError(RunetimeError):
    """The vector engine could not allocate a new index."""
    kind = "InitializationFailed"
    exit_code = 7


class AddFailedError(RunetimeError):
    kind = "AddFailed"
    exit_code = 8


class SearchFailedError(RunetimeError):
    kind = "SearchFailed"
    exit_code = 9


class AlreadyRunningError(RunetimeError):
    """A compression run (or the daemon itself) is already in progress."""
    kind = "AlreadyRunning"
    exit_code = 10
    retryable = True


class FatalError(RunetimeError):
    """Unrecoverable startup condition: bad config, daemon spawn failure."""
    kind = "Fatal"
    exit_code = 70
