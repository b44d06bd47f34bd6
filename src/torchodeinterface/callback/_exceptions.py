"""Exceptions raised by the foreign solver interface."""


class ODEInterfaceError(Exception):
    """Base exception for all foreign solver interface errors."""

    pass


class InternalInconsistency(ODEInterfaceError):
    """Raised when a callback carries a call id that is not registered.

    Either the registry was corrupted or a stale or foreign id reached a
    callback. Always fatal to the current run.
    """

    pass


class UnsupportedCapability(ODEInterfaceError):
    """Raised when user code requests behavior the kernel cannot honor."""

    pass


class UserCallableFailure(ODEInterfaceError):
    """Raised when a user-supplied callable fails inside a callback.

    The original exception is available as ``__cause__``.
    """

    pass


class LayoutViolation(ODEInterfaceError, ValueError):
    """Raised when a banded or blocked matrix layout is inconsistent."""

    pass
