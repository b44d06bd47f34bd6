"""Radau IIA (order 5) through Hairer's Fortran RADAU5.

The typical call stack of one run::

    radau5
        output_fn(INIT, ...)
        RADAU5 (foreign)
            mass callback             once per matrix refresh
            rhs callback              many times
            jacobian callback         on Jacobian refresh
            solout callback           after every accepted step
                output_fn(STEP, ..., evaluate)
                    evaluate(t)
                        CONTR5 (foreign), once per component
        output_fn(DONE, ...)
"""

import enum
import logging
import threading
from typing import Callable, Dict, NamedTuple, Optional, Tuple, Union

import numpy
import torch
from tensordict import TensorDict

from torchodeinterface.banded_matrix._banded_matrix import BandedMatrix
from torchodeinterface.banded_matrix._structured_matrix import (
    normalize_band_structure,
)
from torchodeinterface.callback._call_context import (
    CallContext,
    LogLevel,
    validate_special_structure,
)
from torchodeinterface.callback._call_registry import (
    CallRegistry,
    default_registry,
)
from torchodeinterface.callback._exceptions import LayoutViolation
from torchodeinterface.callback._native_integer import (
    INT32,
    INT64,
    NativeInteger,
)
from torchodeinterface.callback._output import OutputCall, OutputMode
from torchodeinterface.radau5._callback_bridge import (
    CallbackBridge,
    call_output_fn,
)
from torchodeinterface.radau5._dense_output import (
    DenseOutputEvaluator,
    no_dense_output,
)
from torchodeinterface.radau5._library import Radau5Library
from torchodeinterface.radau5._options import Radau5Arguments, Radau5Options
from torchodeinterface.radau5._state import flatten_state

logger = logging.getLogger(__name__)


class ReturnCode(enum.IntEnum):
    """Status reported by RADAU5 in IDID."""

    SUCCESS = 1
    INTERRUPTED = 2
    INCONSISTENT_INPUT = -1
    MORE_STEPS_NEEDED = -2
    STEP_SIZE_TOO_SMALL = -3
    SINGULAR_MATRIX = -4


class Radau5Result(NamedTuple):
    """Outcome of one RADAU5 run."""

    t: float
    y: Union[torch.Tensor, TensorDict]
    return_code: ReturnCode
    statistics: Dict[str, int]


_BRIDGES: Dict[NativeInteger, CallbackBridge] = {}
_BRIDGES_LOCK = threading.Lock()


def _bridge_for(
    registry: CallRegistry, integer: NativeInteger
) -> CallbackBridge:
    if registry is not default_registry():
        return CallbackBridge(registry, integer)
    with _BRIDGES_LOCK:
        bridge = _BRIDGES.get(integer)
        if bridge is None:
            bridge = _BRIDGES[integer] = CallbackBridge(registry, integer)
    return bridge


def _tolerances(rtol, atol, d: int) -> Tuple[numpy.ndarray, numpy.ndarray]:
    rtol = numpy.atleast_1d(
        numpy.asarray(torch.as_tensor(rtol, dtype=torch.float64))
    )
    atol = numpy.atleast_1d(
        numpy.asarray(torch.as_tensor(atol, dtype=torch.float64))
    )
    if rtol.shape != atol.shape or rtol.shape[0] not in (1, d):
        raise ValueError(
            f"rtol and atol must both be scalars or both have length {d}, "
            f"got shapes {rtol.shape} and {atol.shape}"
        )
    if (rtol <= 0).any() or (atol <= 0).any():
        raise ValueError("rtol and atol must be positive")
    return rtol, atol


def _mass_matrix(
    mass_matrix, nm1: int
) -> Tuple[Optional[Union[torch.Tensor, BandedMatrix]], Optional[tuple]]:
    """Copy and validate the (d - m1) x (d - m1) mass matrix block."""
    if mass_matrix is None:
        return None, None
    if isinstance(mass_matrix, BandedMatrix):
        if mass_matrix.shape != (nm1, nm1):
            raise LayoutViolation(
                f"mass matrix must be {nm1}x{nm1}, got "
                f"{mass_matrix.shape[0]}x{mass_matrix.shape[1]}"
            )
        bandwidth = normalize_band_structure(
            (mass_matrix.lower, mass_matrix.upper), nm1
        )
        if bandwidth is None:
            return mass_matrix.to_dense().to(torch.float64), None
        copy = BandedMatrix(
            mass_matrix.data.detach().to(torch.float64).clone(),
            mass_matrix.lower,
            mass_matrix.upper,
            nm1,
        )
        return copy, bandwidth
    mass = torch.as_tensor(mass_matrix, dtype=torch.float64)
    if tuple(mass.shape) != (nm1, nm1):
        raise LayoutViolation(
            f"mass matrix must be {nm1}x{nm1}, got shape "
            f"{tuple(mass.shape)}"
        )
    return mass.detach().clone(), None


def _jacobian_bandwidth(
    jacobian_bandwidth, d: int, m1: int, m2: int
) -> Optional[Tuple[int, int]]:
    if jacobian_bandwidth is None:
        return None
    if m1 == 0:
        return normalize_band_structure(jacobian_bandwidth, d)
    if m1 + m2 != d:
        raise LayoutViolation(
            f"a banded Jacobian with special structure needs m1 + m2 == d, "
            f"got m1={m1}, m2={m2}, d={d}"
        )
    return normalize_band_structure(jacobian_bandwidth, m2)


def _solve(
    rhs: Callable,
    t_span: Tuple[float, float],
    y0: Union[torch.Tensor, TensorDict],
    integer: NativeInteger,
    *,
    rtol=1e-3,
    atol=1e-6,
    jacobian: Optional[Callable] = None,
    jacobian_bandwidth: Optional[Tuple[int, int]] = None,
    mass_matrix=None,
    m1: int = 0,
    m2: Optional[int] = None,
    output_fn: Optional[Callable] = None,
    output_mode: Optional[OutputMode] = None,
    options: Optional[Radau5Options] = None,
    library: Optional[Radau5Library] = None,
    registry: Optional[CallRegistry] = None,
    log: Optional[logging.Logger] = None,
    log_level: LogLevel = LogLevel.NONE,
) -> Radau5Result:
    t0, t_end = (float(t) for t in t_span)
    y_flat, unflatten = flatten_state(y0)
    x0 = numpy.array(y_flat.detach().cpu(), dtype=numpy.float64)
    d = x0.shape[0]
    if d == 0:
        raise ValueError("y0 must have at least one element")

    m2 = m1 if m2 is None else m2
    validate_special_structure(m1, m2, d)
    if m1 > 0 and isinstance(y0, TensorDict):
        raise ValueError("special structure requires a Tensor state")
    nm1 = d - m1

    if output_mode is None:
        output_mode = (
            OutputMode.NEVER if output_fn is None else OutputMode.DENSE
        )
    if output_mode is not OutputMode.NEVER and output_fn is None:
        raise ValueError(f"output_mode={output_mode} needs an output_fn")

    rtol, atol = _tolerances(rtol, atol, d)
    mass, mass_bandwidth = _mass_matrix(mass_matrix, nm1)
    bandwidth = None
    if jacobian is not None:
        bandwidth = _jacobian_bandwidth(jacobian_bandwidth, d, m1, m2)
    arguments = Radau5Arguments.build(
        integer,
        t0,
        t_end,
        x0,
        rtol,
        atol,
        m1,
        m2,
        has_jacobian=jacobian is not None,
        jacobian_bandwidth=bandwidth,
        mass_bandwidth=mass_bandwidth,
        has_mass=mass is not None,
        has_output=output_mode is not OutputMode.NEVER,
        options=options or Radau5Options(),
    )

    if library is None:
        library = Radau5Library.load(integer=integer)
    if library.integer != integer:
        raise ValueError(
            f"library uses {library.integer.name} integers, "
            f"expected {integer.name}"
        )
    if registry is None:
        registry = default_registry()
    bridge = _bridge_for(registry, integer)

    context = CallContext(
        dimension=d,
        rhs=rhs,
        m1=m1,
        m2=m2,
        jacobian=jacobian,
        jacobian_bandwidth=bandwidth,
        mass_matrix=mass,
        output_fn=output_fn,
        output_mode=output_mode,
        continuation_query=library.contr5,
        integer=integer,
        logger=log or logger,
        log_level=log_level,
        unflatten=unflatten,
    )
    if output_mode is OutputMode.DENSE:
        context.evaluator = DenseOutputEvaluator(context)
    else:
        context.evaluator = no_dense_output

    with registry.registered(context) as call_id:
        bridge.codec.encode_into(call_id, arguments.ipar)
        context.log(
            LogLevel.GENERAL, "radau5 called with t0=%r t_end=%r", t0, t_end
        )
        if output_mode is not OutputMode.NEVER:
            call_output_fn(
                context,
                OutputCall.INIT,
                t0,
                t_end,
                torch.from_numpy(x0.copy()),
                no_dense_output,
            )

        context.log(LogLevel.SOLVER_ARGS, "calling RADAU5 with %s", arguments)
        bridge.take_orphaned_failure()
        library.radau5(*arguments.foreign_arguments(bridge))
        context.log(LogLevel.SOLVER_ARGS, "RADAU5 returned %s", arguments)

        orphaned = bridge.take_orphaned_failure()
        if orphaned is not None:
            raise orphaned
        if context.pending_error is not None:
            raise context.pending_error

        if output_mode is not OutputMode.NEVER:
            call_output_fn(
                context,
                OutputCall.DONE,
                float(arguments.t[0]),
                t_end,
                torch.from_numpy(arguments.x.copy()),
                no_dense_output,
            )

    return_code = ReturnCode(int(arguments.idid[0]))
    context.log(LogLevel.GENERAL, "done IDID=%d", int(return_code))
    return Radau5Result(
        t=float(arguments.t[0]),
        y=unflatten(torch.from_numpy(arguments.x.copy())),
        return_code=return_code,
        statistics=arguments.statistics(),
    )


def radau5(
    rhs: Callable,
    t_span: Tuple[float, float],
    y0: Union[torch.Tensor, TensorDict],
    *,
    rtol=1e-3,
    atol=1e-6,
    jacobian: Optional[Callable] = None,
    jacobian_bandwidth: Optional[Tuple[int, int]] = None,
    mass_matrix=None,
    m1: int = 0,
    m2: Optional[int] = None,
    output_fn: Optional[Callable] = None,
    output_mode: Optional[OutputMode] = None,
    options: Optional[Radau5Options] = None,
    library: Optional[Radau5Library] = None,
    registry: Optional[CallRegistry] = None,
    log: Optional[logging.Logger] = None,
    log_level: LogLevel = LogLevel.NONE,
) -> Radau5Result:
    """
    Solve an ODE or DAE ``M x' = f(t, x)`` with the Fortran RADAU5 code.

    RADAU5 is an implicit Runge-Kutta method (Radau IIA, order 5) with
    step size control and dense output, suitable for stiff problems and
    differential-algebraic systems of index up to 3.

    Parameters
    ----------
    rhs : callable
        Right-hand side ``rhs(t, x) -> dx``. With special structure it may
        return only the last ``d - m1`` components.
    t_span : tuple[float, float]
        Integration interval (t0, t_end).
    y0 : Tensor or TensorDict
        Initial state.
    rtol, atol : float or Tensor
        Error tolerances, both scalars or both of length d:
        ``error(x_k) <= rtol_k * |x_k| + atol_k``.
    jacobian : callable, optional
        Jacobian filled in place, ``jacobian(t, x, J)`` or, for a banded
        Jacobian with special structure, ``jacobian(t, x, J1, ..., JK)``
        with ``K = 1 + m1 / m2``. ``J`` is a ``(d - m1) x d`` tensor view
        for a full Jacobian and a :class:`BandedMatrix` otherwise. Without
        it the kernel uses finite differences.
    jacobian_bandwidth : tuple of int, optional
        Lower and upper bandwidth of the Jacobian (of each block under
        special structure, which then needs ``m1 + m2 == d``). A lower
        bandwidth of ``rows - 1`` is treated as full.
    mass_matrix : Tensor or BandedMatrix, optional
        The ``(d - m1) x (d - m1)`` lower right block of the mass matrix.
        Identity if not given.
    m1, m2 : int
        Special structure: ``x'[k] = x[k + m2]`` for ``k < m1``. ``m1``
        must be a multiple of ``m2``; ``m2`` defaults to ``m1``.
    output_fn : callable, optional
        ``output_fn(reason, t_old, t, x, evaluate) -> OutputStatus``,
        called with ``OutputCall.INIT`` before, ``OutputCall.STEP`` after
        every accepted step and ``OutputCall.DONE`` after the integration.
        ``evaluate(s)`` returns the dense output at ``t_old <= s <= t``
        while handling a step in ``OutputMode.DENSE``.
    output_mode : OutputMode, optional
        Defaults to ``DENSE`` when ``output_fn`` is given, else ``NEVER``.
    options : Radau5Options, optional
        Tuning knobs of the kernel.
    library : Radau5Library, optional
        The kernel. Loaded with :meth:`Radau5Library.load` if not given.
    registry : CallRegistry, optional
        Registry for the run's context. Defaults to the process-wide one.
    log : logging.Logger, optional
        Logger receiving the run's diagnostics.
    log_level : LogLevel
        Which diagnostics are emitted.

    Returns
    -------
    result : Radau5Result
        Final time and state, the kernel's return code and its counters.

    Raises
    ------
    LayoutViolation
        If the special structure, a bandwidth or the mass matrix shape is
        inconsistent. Raised before the kernel is called.
    UserCallableFailure
        If ``rhs``, ``jacobian`` or ``output_fn`` raised. The original
        exception is chained.
    UnsupportedCapability
        If ``output_fn`` returned ``OutputStatus.CONTINUE_STATE_CHANGED``.
    InternalInconsistency
        If a callback carried an unknown call id.

    Examples
    --------
    >>> import torch
    >>> def robertson(t, y):
    ...     return torch.stack([
    ...         -0.04 * y[0] + 1e4 * y[1] * y[2],
    ...         0.04 * y[0] - 1e4 * y[1] * y[2] - 3e7 * y[1] ** 2,
    ...         3e7 * y[1] ** 2,
    ...     ])
    >>> y0 = torch.tensor([1.0, 0.0, 0.0], dtype=torch.float64)
    >>> result = radau5(robertson, (0.0, 1e5), y0, rtol=1e-6, atol=1e-10)
    """
    return _solve(
        rhs,
        t_span,
        y0,
        INT64,
        rtol=rtol,
        atol=atol,
        jacobian=jacobian,
        jacobian_bandwidth=jacobian_bandwidth,
        mass_matrix=mass_matrix,
        m1=m1,
        m2=m2,
        output_fn=output_fn,
        output_mode=output_mode,
        options=options,
        library=library,
        registry=registry,
        log=log,
        log_level=log_level,
    )


def radau5_i32(
    rhs: Callable,
    t_span: Tuple[float, float],
    y0: Union[torch.Tensor, TensorDict],
    **kwargs,
) -> Radau5Result:
    """:func:`radau5` for a kernel compiled with 32-bit integers."""
    return _solve(rhs, t_span, y0, INT32, **kwargs)
