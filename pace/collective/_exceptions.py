class UsageError(RuntimeError):
    """Raised when the collective layer is used incorrectly.

    These are programming errors and are not meant to be recovered from.
    """

    pass


class NotInitializedError(UsageError):
    """Raised when a Communicator is built over a substrate which is not
    available or not initialized."""

    pass


class FutureStateError(UsageError):
    """Raised when a Future result is requested before completion, or more
    than once."""

    pass


class FixedSizeError(UsageError):
    """Raised when a fixed-size value is asked to change its element count."""

    pass


class UnsupportedTypeError(TypeError):
    """Raised when a value has no known wire datatype mapping."""

    pass


class ConcurrencyError(Exception):
    """Exception to denote that a rank cannot proceed because it is waiting on a
    call from another rank."""

    pass
