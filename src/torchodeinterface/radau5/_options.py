"""Tuning knobs of the RADAU5 kernel and the arrays built from them."""

import ctypes
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Tuple

import numpy

from torchodeinterface.callback._native_integer import NativeInteger

if TYPE_CHECKING:
    from torchodeinterface.radau5._callback_bridge import CallbackBridge


@dataclass(frozen=True)
class Radau5Options:
    """
    Numerical parameters passed to RADAU5 through IWORK, WORK and H.

    ``None`` selects the kernel's default. See Hairer & Wanner, "Solving
    Ordinary Differential Equations II", Section IV.8 and the RADAU5 source
    for the meaning of each parameter.

    Attributes
    ----------
    eps : float
        Rounding unit, ``1e-19 < eps < 1``.
    transform_jacobian_to_hessenberg : bool
        Transform the Jacobian to Hessenberg form. Not allowed with a mass
        matrix or a banded Jacobian.
    max_steps : int
        Maximal number of allowed steps.
    max_newton_iterations : int
        Maximal number of Newton iterations per step.
    newton_start_zero : bool
        Start Newton's method from zero instead of the extrapolated
        collocation solution.
    index_dimensions : tuple of int, optional
        Number of index 1, 2 and 3 variables of a DAE. Defaults to
        ``(d, 0, 0)``; must sum to d.
    step_size_strategy : int
        1 for the predictive Gustafsson controller, 2 for the classical one.
    safety_factor : float
        Safety factor of the step size control, ``0.001 < rho < 1``.
    jacobian_recompute_factor : float
        How costly Jacobian evaluations are; negative recomputes after
        every accepted step. Nonzero.
    newton_stop_criterion : float, optional
        Stopping criterion of Newton's method. Defaults to
        ``max(10 * eps / rtol, min(0.03, sqrt(rtol)))``.
    freeze_step_size : tuple of float
        Keep the step size when ``left < h_new / h_old < right``.
    max_step_size : float, optional
        Maximal step size. Defaults to ``t_end - t0``.
    step_size_selection : tuple of float
        Bounds ``(min, max)`` of ``h_new / h_old``.
    initial_step_size : float
        Initial step size guess.
    """

    eps: float = 1e-16
    transform_jacobian_to_hessenberg: bool = False
    max_steps: int = 100000
    max_newton_iterations: int = 7
    newton_start_zero: bool = False
    index_dimensions: Optional[Tuple[int, int, int]] = None
    step_size_strategy: int = 1
    safety_factor: float = 0.9
    jacobian_recompute_factor: float = 0.001
    newton_stop_criterion: Optional[float] = None
    freeze_step_size: Tuple[float, float] = (1.0, 1.2)
    max_step_size: Optional[float] = None
    step_size_selection: Tuple[float, float] = (0.2, 8.0)
    initial_step_size: float = 1e-6

    def __post_init__(self):
        if not 1e-19 < self.eps < 1.0:
            raise ValueError(f"eps must be in (1e-19, 1), got {self.eps}")
        if self.max_steps <= 0:
            raise ValueError(
                f"max_steps must be positive, got {self.max_steps}"
            )
        if self.max_newton_iterations <= 0:
            raise ValueError(
                f"max_newton_iterations must be positive, got "
                f"{self.max_newton_iterations}"
            )
        if self.step_size_strategy not in (1, 2):
            raise ValueError(
                f"step_size_strategy must be 1 or 2, got "
                f"{self.step_size_strategy}"
            )
        if not 0.001 < self.safety_factor < 1.0:
            raise ValueError(
                f"safety_factor must be in (0.001, 1), got "
                f"{self.safety_factor}"
            )
        if self.jacobian_recompute_factor == 0:
            raise ValueError("jacobian_recompute_factor must be nonzero")
        left, right = self.freeze_step_size
        if left > 1.0 or right < 1.0:
            raise ValueError(
                f"freeze_step_size must satisfy left <= 1 <= right, got "
                f"{self.freeze_step_size}"
            )
        low, high = self.step_size_selection
        if low > 1.0 or high < 1.0:
            raise ValueError(
                f"step_size_selection must satisfy min <= 1 <= max, got "
                f"{self.step_size_selection}"
            )
        if self.max_step_size is not None and self.max_step_size == 0:
            raise ValueError("max_step_size must be nonzero")


@dataclass
class Radau5Arguments:
    """
    The arrays of one RADAU5 call, laid out as the kernel expects them.

    Scalars are one-element arrays so the kernel can read and write them
    through pointers. ``t`` and ``x`` are updated in place by the kernel.
    """

    n: numpy.ndarray
    t: numpy.ndarray
    x: numpy.ndarray
    t_end: numpy.ndarray
    h: numpy.ndarray
    rtol: numpy.ndarray
    atol: numpy.ndarray
    itol: numpy.ndarray
    ijac: numpy.ndarray
    mljac: numpy.ndarray
    mujac: numpy.ndarray
    imas: numpy.ndarray
    mlmas: numpy.ndarray
    mumas: numpy.ndarray
    iout: numpy.ndarray
    work: numpy.ndarray
    lwork: numpy.ndarray
    iwork: numpy.ndarray
    liwork: numpy.ndarray
    rpar: numpy.ndarray
    ipar: numpy.ndarray
    idid: numpy.ndarray
    integer: NativeInteger

    @classmethod
    def build(
        cls,
        integer: NativeInteger,
        t0: float,
        t_end: float,
        x0: numpy.ndarray,
        rtol: numpy.ndarray,
        atol: numpy.ndarray,
        m1: int,
        m2: int,
        has_jacobian: bool,
        jacobian_bandwidth: Optional[Tuple[int, int]],
        mass_bandwidth: Optional[Tuple[int, int]],
        has_mass: bool,
        has_output: bool,
        options: Radau5Options,
    ) -> "Radau5Arguments":
        """
        Lay out the arguments of one call.

        Parameters
        ----------
        integer : NativeInteger
            Integer width of the kernel build.
        t0, t_end : float
            Integration interval.
        x0 : ndarray
            Initial state, float64, shape (d,).
        rtol, atol : ndarray
            Tolerances, both of length 1 (scalar) or both of length d.
        m1, m2 : int
            Validated special structure partition.
        has_jacobian : bool
            Whether a Jacobian callback is supplied.
        jacobian_bandwidth : tuple of int, optional
            Normalized Jacobian bandwidth, ``None`` for full.
        mass_bandwidth : tuple of int, optional
            Normalized mass matrix bandwidth, ``None`` for full.
        has_mass : bool
            Whether a mass matrix is supplied.
        has_output : bool
            Whether the step notification callback is used.
        options : Radau5Options
            Tuning knobs.

        Raises
        ------
        ValueError
            If an option is inconsistent with the problem.
        """
        d = x0.shape[0]
        nm1 = d - m1

        ints = integer.array
        imas, mlmas, mumas = 0, 0, 0
        if has_mass:
            imas = 1
            mlmas, mumas = (
                (nm1, nm1) if mass_bandwidth is None else mass_bandwidth
            )
        ijac = 1 if has_jacobian else 0
        if has_jacobian and jacobian_bandwidth is not None:
            mljac, mujac = jacobian_bandwidth
        else:
            mljac, mujac = d, d

        implicit = imas != 0
        jacobian_banded = mljac < nm1

        ljac = 1 + mljac + mujac if jacobian_banded else nm1
        if not implicit:
            lmas = 0
        elif mlmas == nm1:
            lmas = nm1
        else:
            lmas = 1 + mlmas + mumas
        le = 1 + 2 * mljac + mujac if jacobian_banded else nm1
        if m1 == 0:
            lwork = d * (ljac + lmas + 3 * le + 12) + 20
        else:
            lwork = d * (ljac + 12) + nm1 * (lmas + 3 * le) + 20
        liwork = 3 * d + 20

        if options.transform_jacobian_to_hessenberg and (
            jacobian_banded or implicit
        ):
            raise ValueError(
                "transform_jacobian_to_hessenberg does not work with a "
                "banded Jacobian or a mass matrix"
            )
        index_dimensions = options.index_dimensions or (d, 0, 0)
        if (
            index_dimensions[0] <= 0
            or min(index_dimensions[1:]) < 0
            or sum(index_dimensions) != d
        ):
            raise ValueError(
                f"index_dimensions must be positive for index 1, "
                f"non-negative otherwise and sum to {d}, got "
                f"{index_dimensions}"
            )

        iwork = integer.zeros(liwork)
        iwork[0] = 1 if options.transform_jacobian_to_hessenberg else 0
        iwork[1] = options.max_steps
        iwork[2] = options.max_newton_iterations
        iwork[3] = 1 if options.newton_start_zero else 0
        iwork[4:7] = index_dimensions
        iwork[7] = options.step_size_strategy
        iwork[8] = m1
        iwork[9] = m2

        rtol0 = float(rtol[0])
        newton_stop = options.newton_stop_criterion
        if newton_stop is None:
            newton_stop = max(
                10 * options.eps / rtol0, min(0.03, math.sqrt(rtol0))
            )
        if not newton_stop > options.eps / rtol0:
            raise ValueError(
                f"newton_stop_criterion must exceed eps / rtol = "
                f"{options.eps / rtol0}, got {newton_stop}"
            )
        max_step_size = options.max_step_size
        if max_step_size is None:
            max_step_size = t_end - t0

        work = numpy.zeros(lwork, dtype=numpy.float64)
        work[0] = options.eps
        work[1] = options.safety_factor
        work[2] = options.jacobian_recompute_factor
        work[3] = newton_stop
        work[4:6] = options.freeze_step_size
        work[6] = max_step_size
        work[7:9] = options.step_size_selection

        return cls(
            n=ints([d]),
            t=numpy.array([t0], dtype=numpy.float64),
            x=numpy.array(x0, dtype=numpy.float64),
            t_end=numpy.array([t_end], dtype=numpy.float64),
            h=numpy.array([options.initial_step_size], dtype=numpy.float64),
            rtol=numpy.array(rtol, dtype=numpy.float64),
            atol=numpy.array(atol, dtype=numpy.float64),
            itol=ints([0 if rtol.shape[0] == 1 else 1]),
            ijac=ints([ijac]),
            mljac=ints([mljac]),
            mujac=ints([mujac]),
            imas=ints([imas]),
            mlmas=ints([mlmas]),
            mumas=ints([mumas]),
            iout=ints([1 if has_output else 0]),
            work=work,
            lwork=ints([lwork]),
            iwork=iwork,
            liwork=ints([liwork]),
            rpar=numpy.zeros(1, dtype=numpy.float64),
            ipar=integer.zeros(2),
            idid=integer.zeros(1),
            integer=integer,
        )

    def statistics(self) -> dict:
        """Counters the kernel leaves in IWORK(14) to IWORK(20)."""
        names = [
            "rhs_calls",
            "jacobian_calls",
            "steps",
            "accepted_steps",
            "rejected_steps",
            "lu_decompositions",
            "forward_backward_substitutions",
        ]
        return {
            name: int(value) for name, value in zip(names, self.iwork[13:20])
        }

    def foreign_arguments(self, bridge: "CallbackBridge") -> List:
        """Positional arguments of the kernel call, in kernel order."""
        Int = self.integer.pointer
        Real = ctypes.POINTER(ctypes.c_double)

        def p(array, kind):
            return array.ctypes.data_as(kind)

        return [
            p(self.n, Int), bridge.rhs_callback,
            p(self.t, Real), p(self.x, Real), p(self.t_end, Real),
            p(self.h, Real),
            p(self.rtol, Real), p(self.atol, Real), p(self.itol, Int),
            bridge.jacobian_callback,
            p(self.ijac, Int), p(self.mljac, Int), p(self.mujac, Int),
            bridge.mass_callback,
            p(self.imas, Int), p(self.mlmas, Int), p(self.mumas, Int),
            bridge.solout_callback, p(self.iout, Int),
            p(self.work, Real), p(self.lwork, Int),
            p(self.iwork, Int), p(self.liwork, Int),
            p(self.rpar, Real), p(self.ipar, Int), p(self.idid, Int),
        ]  # fmt: skip
