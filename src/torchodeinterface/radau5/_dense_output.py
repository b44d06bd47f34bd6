"""Dense output through the kernel's continuous extension routine.

The kernel keeps the collocation polynomial of the last accepted step in
buffers that are only valid between two step notifications. The step
notification callback saves their addresses on the run's context, and the
evaluator reads them from there. Handles are cleared when the output
function returns, so an evaluator that escapes the output function fails
instead of reading stale memory.
"""

import ctypes
from typing import Union

import torch
from tensordict import TensorDict

from torchodeinterface.callback._call_context import CallContext, LogLevel
from torchodeinterface.callback._exceptions import (
    InternalInconsistency,
    UnsupportedCapability,
)


def evaluate_dense_output(context: CallContext, t: float) -> torch.Tensor:
    """
    Evaluate the continuous solution of the last accepted step at ``t``.

    Parameters
    ----------
    context : CallContext
        Context of the run, inside a step notification.
    t : float
        Time inside the last accepted step.

    Returns
    -------
    x : Tensor
        Flat state at ``t``, shape (dimension,).

    Notes
    -----
    At the end of the step the saved state is returned without calling the
    continuous extension routine. Otherwise the routine is called once per
    component.
    """
    t = float(t)
    handles = context.saved_buffer_handles
    if handles is None:
        raise InternalInconsistency(
            "dense output is only available while the output function "
            "handles a step"
        )

    context.log(LogLevel.EVALSOL, "evaluate called with t=%r", t)
    if t == context.last_step_times[1]:
        context.log(LogLevel.EVALSOL, "t is the step end, contr5 not called")
        return context.last_step_state.clone()

    query = context.continuation_query
    index = context.integer.ctype(0)
    time = ctypes.c_double(t)
    result = torch.empty(context.dimension, dtype=torch.float64)
    for k in range(context.dimension):
        # Fortran component indices start at 1.
        index.value = k + 1
        result[k] = query(
            ctypes.byref(index), ctypes.byref(time), handles.cont, handles.lrc
        )

    context.log(LogLevel.EVALSOL, "contr5 returned %s", result)
    return result


class DenseOutputEvaluator:
    """
    Dense output callable handed to the output function of one run.

    Built once per run and bound to the run's context; every call goes
    through :func:`evaluate_dense_output`.

    Parameters
    ----------
    context : CallContext
        Context of the run.
    """

    def __init__(self, context: CallContext):
        self.context = context

    def __call__(self, t: float) -> Union[torch.Tensor, TensorDict]:
        return self.context.unflatten(evaluate_dense_output(self.context, t))


def no_dense_output(t: float):
    """Evaluator handed out when dense output is unavailable."""
    raise UnsupportedCapability(
        "dense output is not available here; request "
        "output_mode=OutputMode.DENSE and evaluate inside a step"
    )
