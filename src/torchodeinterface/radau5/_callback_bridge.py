"""Foreign-callable entry points of the RADAU5 kernel.

The kernel calls back through four fixed C signatures. The only per-run
data it threads through is the integer parameter array ``ipar``, which
carries the packed call id. Each entry point decodes the id, fetches the run
context from the registry and does its work on tensor views of the kernel's
buffers.

Nothing may raise across the C boundary. Failures are latched on the
context (or, when no context can be found, in a thread-local slot of the
bridge), the entry point writes a neutral value, and the orchestrator
re-raises once the foreign call returns.
"""

import ctypes
import logging
import threading
from typing import Callable, Optional

import torch
from tensordict import TensorDict

from torchodeinterface.banded_matrix._structured_matrix import (
    encode_matrix,
    split_jacobian_blocks,
)
from torchodeinterface.callback._call_context import (
    CallContext,
    ContinuationHandles,
    LogLevel,
)
from torchodeinterface.callback._call_registry import CallRegistry
from torchodeinterface.callback._exceptions import (
    InternalInconsistency,
    ODEInterfaceError,
    UnsupportedCapability,
    UserCallableFailure,
)
from torchodeinterface.callback._identifier_codec import IdentifierCodec
from torchodeinterface.callback._native_integer import INT64, NativeInteger
from torchodeinterface.callback._output import OutputCall, OutputStatus
from torchodeinterface.radau5._buffer_view import matrix_view, vector_view
from torchodeinterface.radau5._state import flatten_state

logger = logging.getLogger(__name__)

_REAL = ctypes.POINTER(ctypes.c_double)

SOLOUT_CONTINUE = 0
SOLOUT_STOP = -1


def _latch_user_failure(
    context: CallContext, message: str, cause: BaseException
) -> None:
    failure = UserCallableFailure(message)
    failure.__cause__ = cause
    context.latch(failure)


def call_output_fn(
    context: CallContext,
    reason: OutputCall,
    t_old: float,
    t: float,
    x: torch.Tensor,
    evaluate: Callable,
):
    """Call the user output function, wrapping its failures.

    Errors raised by the evaluator itself pass through unchanged.
    """
    try:
        return context.output_fn(
            reason, t_old, t, context.unflatten(x), evaluate
        )
    except ODEInterfaceError:
        raise
    except Exception as error:
        raise UserCallableFailure(
            f"output function failed during {reason.name}: {error}"
        ) from error


class CallbackBridge:
    """
    The RHS, Jacobian, mass matrix and step notification callbacks.

    One bridge serves every run registered in ``registry`` for one integer
    width; the ctypes callback objects live as long as the bridge.

    Parameters
    ----------
    registry : CallRegistry
        Where run contexts are looked up.
    integer : NativeInteger
        Integer width of the kernel build.

    Attributes
    ----------
    rhs_callback, jacobian_callback, mass_callback, solout_callback
        ctypes function pointers to pass to the kernel.
    """

    def __init__(
        self, registry: CallRegistry, integer: NativeInteger = INT64
    ):
        self.registry = registry
        self.integer = integer
        self.codec = IdentifierCodec(integer)
        self._orphaned = threading.local()

        Int = integer.pointer
        self.rhs_type = ctypes.CFUNCTYPE(
            None, Int, _REAL, _REAL, _REAL, _REAL, Int
        )
        self.jacobian_type = ctypes.CFUNCTYPE(
            None, Int, _REAL, _REAL, _REAL, Int, _REAL, Int
        )
        self.mass_type = ctypes.CFUNCTYPE(None, Int, _REAL, Int, _REAL, Int)
        self.solout_type = ctypes.CFUNCTYPE(
            None, Int, _REAL, _REAL, _REAL, _REAL, Int, Int, _REAL, Int, Int
        )

        self.rhs_callback = self.rhs_type(self._rhs)
        self.jacobian_callback = self.jacobian_type(self._jacobian)
        self.mass_callback = self.mass_type(self._mass)
        self.solout_callback = self.solout_type(self._solout)

    def take_orphaned_failure(self) -> Optional[BaseException]:
        """Return and clear the failure of a callback that had no context."""
        error = getattr(self._orphaned, "error", None)
        self._orphaned.error = None
        return error

    def _context(self, ipar, entry: str) -> Optional[CallContext]:
        call_id = self.codec.decode(ipar)
        try:
            context = self.registry.lookup(call_id)
        except InternalInconsistency as error:
            logger.error("%s: %s", entry, error)
            if getattr(self._orphaned, "error", None) is None:
                self._orphaned.error = error
            return None
        if context.pending_error is not None:
            return None
        return context

    def _rhs(self, n_, t_, x_, f_, rpar_, ipar_):
        n = n_[0]
        f = vector_view(f_, n)
        context = self._context(ipar_, "rhs")
        if context is None:
            f.zero_()
            return

        t = t_[0]
        x = vector_view(x_, n).clone()
        context.log(LogLevel.RHS, "rhs called with t=%r x=%s", t, x)
        try:
            dx = context.rhs(t, context.unflatten(x))
            if not isinstance(dx, TensorDict):
                dx = torch.as_tensor(dx, dtype=torch.float64)
            dx, _ = flatten_state(dx)
        except Exception as error:
            _latch_user_failure(
                context, f"right-hand side failed at t={t}: {error}", error
            )
            f.zero_()
            return

        m1, m2 = context.m1, context.m2
        if dx.numel() == n:
            f.copy_(dx)
        elif m1 > 0 and dx.numel() == n - m1:
            # x'[k] = x[k + m2] for the leading m1 components
            f[:m1].copy_(x[m2 : m2 + m1])
            f[m1:].copy_(dx)
        else:
            expected = f"{n}" if m1 == 0 else f"{n} or {n - m1}"
            context.latch(
                UserCallableFailure(
                    f"right-hand side returned {dx.numel()} values, "
                    f"expected {expected}"
                )
            )
            f.zero_()
            return
        context.log(LogLevel.RHS, "rhs returned %s", f)

    def _jacobian(self, n_, t_, x_, dfx_, ldfx_, rpar_, ipar_):
        n = n_[0]
        ldfx = ldfx_[0]
        J = matrix_view(dfx_, ldfx, n)
        context = self._context(ipar_, "jacobian")
        if context is None:
            J.zero_()
            return

        t = t_[0]
        x = vector_view(x_, n).clone()
        context.log(
            LogLevel.JACOBIAN, "jacobian called with n=%d ldfx=%d", n, ldfx
        )
        if context.jacobian is None:
            context.latch(
                InternalInconsistency(
                    "kernel requested a Jacobian but none is configured"
                )
            )
            J.zero_()
            return
        bandwidth = context.jacobian_bandwidth
        if bandwidth is None:
            expected = n - context.m1
        else:
            expected = 1 + bandwidth[0] + bandwidth[1]
        if ldfx != expected:
            context.latch(
                InternalInconsistency(
                    f"kernel passed a Jacobian leading dimension of {ldfx}, "
                    f"expected {expected}"
                )
            )
            J.zero_()
            return

        try:
            blocks = split_jacobian_blocks(
                J, bandwidth, context.m1, context.m2
            )
        except ValueError as error:
            context.latch(
                InternalInconsistency(f"cannot split Jacobian: {error}")
            )
            return
        try:
            context.jacobian(t, x, *blocks)
        except Exception as error:
            _latch_user_failure(
                context, f"Jacobian failed at t={t}: {error}", error
            )
            return
        context.log(LogLevel.JACOBIAN, "dfx=%s", J)

    def _mass(self, n_, am_, lmas_, rpar_, ipar_):
        n = n_[0]
        lmas = lmas_[0]
        M = matrix_view(am_, lmas, n)
        context = self._context(ipar_, "mass")
        if context is None:
            M.zero_()
            return

        context.log(LogLevel.MASS, "mass called with n=%d lmas=%d", n, lmas)
        if context.mass_matrix is None:
            context.latch(
                InternalInconsistency(
                    "kernel requested a mass matrix but none is configured"
                )
            )
            M.zero_()
            return
        try:
            encode_matrix(context.mass_matrix, M)
        except ValueError as error:
            context.latch(
                InternalInconsistency(f"cannot marshal mass matrix: {error}")
            )
            return
        context.log(LogLevel.MASS, "am=%s", M)

    def _solout(
        self, nr_, told_, t_, x_, cont_, lrc_, n_, rpar_, ipar_, irtrn_
    ):
        context = self._context(ipar_, "solout")
        if context is None:
            irtrn_[0] = SOLOUT_STOP
            return

        n = n_[0]
        t_old = told_[0]
        t = t_[0]
        x = vector_view(x_, n).clone()
        context.log(
            LogLevel.SOLOUT,
            "solout called with nr=%d told=%r t=%r x=%s",
            nr_[0],
            t_old,
            t,
            x,
        )
        context.last_step_index = nr_[0]
        context.last_step_times = (t_old, t)
        context.last_step_state = x
        if context.output_fn is None:
            irtrn_[0] = SOLOUT_CONTINUE
            return

        context.saved_buffer_handles = ContinuationHandles(cont_, lrc_)
        try:
            status = call_output_fn(
                context, OutputCall.STEP, t_old, t, x, context.evaluator
            )
        except ODEInterfaceError as error:
            context.latch(error)
            irtrn_[0] = SOLOUT_STOP
            return
        finally:
            context.saved_buffer_handles = None

        if status is OutputStatus.CONTINUE:
            irtrn_[0] = SOLOUT_CONTINUE
        elif status is OutputStatus.STOP:
            irtrn_[0] = SOLOUT_STOP
        elif status is OutputStatus.CONTINUE_STATE_CHANGED:
            context.latch(
                UnsupportedCapability(
                    "radau5 does not support changing the solution inside "
                    "the output function"
                )
            )
            irtrn_[0] = SOLOUT_STOP
        else:
            context.latch(
                UserCallableFailure(
                    f"output function returned {status!r}, expected an "
                    f"OutputStatus"
                )
            )
            irtrn_[0] = SOLOUT_STOP
