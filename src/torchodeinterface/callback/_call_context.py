"""Per-run state shared between the orchestrator and the kernel callbacks."""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple

import torch

from torchodeinterface.callback._exceptions import LayoutViolation
from torchodeinterface.callback._native_integer import INT64, NativeInteger
from torchodeinterface.callback._output import OutputMode


class LogLevel(enum.IntFlag):
    """Which parts of a run write diagnostics to the run's logger."""

    NONE = 0
    GENERAL = 1
    RHS = 2
    JACOBIAN = 4
    MASS = 8
    SOLOUT = 16
    EVALSOL = 32
    SOLVER_ARGS = 64
    ALL = 127


@dataclass
class ContinuationHandles:
    """Addresses of the kernel's continuous extension buffers.

    Valid only until the next step notification. Never owned.
    """

    cont: Any
    lrc: Any


@dataclass
class CallContext:
    """
    State of one foreign solver run.

    Created right before the foreign call, registered under ``id`` and
    retired unconditionally after it returns. Only callbacks running on the
    run's own call stack mutate it.

    Attributes
    ----------
    dimension : int
        State dimension d.
    rhs : callable
        Right-hand side ``rhs(t, x) -> dx``.
    m1, m2 : int
        Special structure partition. ``m1 == 0`` disables it.
    jacobian : callable, optional
        User Jacobian, filled in place.
    jacobian_bandwidth : tuple of int, optional
        Common (lower, upper) bandwidth of the Jacobian (blocks). ``None``
        means full.
    mass_matrix : Tensor or BandedMatrix, optional
        Lower right (d - m1) x (d - m1) block of the mass matrix. ``None``
        means identity.
    output_fn : callable, optional
        ``output_fn(reason, t_old, t, x, evaluate) -> OutputStatus``.
    output_mode : OutputMode
        Capability level of the output function.
    continuation_query : callable, optional
        The foreign continuous extension routine.
    integer : NativeInteger
        Integer width of the kernel build.
    evaluator : callable, optional
        Dense output evaluator handed to the output function after steps.
    logger : logging.Logger
        Where diagnostics go.
    log_level : LogLevel
        Which diagnostics are emitted.
    """

    dimension: int
    rhs: Callable
    m1: int = 0
    m2: int = 0
    jacobian: Optional[Callable] = None
    jacobian_bandwidth: Optional[Tuple[int, int]] = None
    mass_matrix: Optional[Any] = None
    output_fn: Optional[Callable] = None
    output_mode: OutputMode = OutputMode.NEVER
    continuation_query: Optional[Callable] = None
    integer: NativeInteger = INT64
    evaluator: Optional[Callable] = None
    logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger("torchodeinterface")
    )
    log_level: LogLevel = LogLevel.NONE
    unflatten: Callable = field(default=lambda x: x)
    id: int = 0
    last_step_index: int = 0
    last_step_times: Tuple[float, float] = (float("nan"), float("nan"))
    last_step_state: Optional[torch.Tensor] = None
    saved_buffer_handles: Optional[ContinuationHandles] = None
    pending_error: Optional[BaseException] = None

    @property
    def prefix(self) -> str:
        return f"[cid {self.id:016x}] "

    def enabled(self, flag: LogLevel) -> bool:
        return bool(self.log_level & flag)

    def log(self, flag: LogLevel, message: str, *args) -> None:
        """Emit a debug record if ``flag`` is enabled for this run."""
        if self.log_level & flag:
            self.logger.debug(self.prefix + message, *args)

    def latch(self, error: BaseException) -> None:
        """Remember the first failure raised inside a callback."""
        if self.pending_error is None:
            self.pending_error = error


def validate_special_structure(m1: int, m2: int, dimension: int) -> None:
    """Check the (M1, M2) partition of a state of size ``dimension``.

    Raises
    ------
    LayoutViolation
        If the partition is inconsistent.
    """
    if m1 < 0 or m2 < 0:
        raise LayoutViolation(
            f"m1 and m2 must be non-negative, got m1={m1}, m2={m2}"
        )
    if (m1 == 0) != (m2 == 0):
        raise LayoutViolation(
            f"m1 and m2 must both be zero or both positive, "
            f"got m1={m1}, m2={m2}"
        )
    if m1 > 0 and m1 % m2 != 0:
        raise LayoutViolation(
            f"m1 must be a multiple of m2, got m1={m1}, m2={m2}"
        )
    if m1 + m2 > dimension:
        raise LayoutViolation(
            f"m1 + m2 must not exceed the dimension {dimension}, "
            f"got m1={m1}, m2={m2}"
        )
