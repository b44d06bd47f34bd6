"""
Context recovery for foreign kernel callbacks.

A foreign kernel only threads a small integer array through its callbacks.
This module provides the pieces that turn that array back into the state
of the run that issued the foreign call.

CallRegistry
    Thread-safe table from call ids to run contexts.
IdentifierCodec
    Packs a 64-bit call id into one 64-bit or two 32-bit integer cells.
CallContext
    Mutable state of one run.
NativeInteger, INT32, INT64
    Integer widths of the kernel builds.
"""

from torchodeinterface.callback._call_context import (
    CallContext,
    ContinuationHandles,
    LogLevel,
    validate_special_structure,
)
from torchodeinterface.callback._call_registry import (
    CallRegistry,
    default_registry,
)
from torchodeinterface.callback._exceptions import (
    InternalInconsistency,
    LayoutViolation,
    ODEInterfaceError,
    UnsupportedCapability,
    UserCallableFailure,
)
from torchodeinterface.callback._identifier_codec import IdentifierCodec
from torchodeinterface.callback._native_integer import (
    INT32,
    INT64,
    NativeInteger,
)
from torchodeinterface.callback._output import (
    OutputCall,
    OutputMode,
    OutputStatus,
)

__all__ = [
    "CallContext",
    "CallRegistry",
    "ContinuationHandles",
    "INT32",
    "INT64",
    "IdentifierCodec",
    "InternalInconsistency",
    "LayoutViolation",
    "LogLevel",
    "NativeInteger",
    "ODEInterfaceError",
    "OutputCall",
    "OutputMode",
    "OutputStatus",
    "UnsupportedCapability",
    "UserCallableFailure",
    "default_registry",
    "validate_special_structure",
]
