"""
Stiff ODE and DAE integration with Hairer's Fortran RADAU5.

radau5, radau5_i32
    Integrate with the 64-bit or 32-bit integer build of the kernel.
Radau5Options
    Numerical tuning knobs of the kernel.
Radau5Result, ReturnCode
    Outcome of one run.
Radau5Library
    Binding of the compiled kernel.
CallbackBridge
    Foreign-callable entry points of the kernel.
DenseOutputEvaluator
    Dense output inside the output function.
"""

from torchodeinterface.radau5._callback_bridge import CallbackBridge
from torchodeinterface.radau5._dense_output import (
    DenseOutputEvaluator,
    evaluate_dense_output,
    no_dense_output,
)
from torchodeinterface.radau5._library import (
    DL_RADAU5,
    DL_RADAU5_I32,
    Radau5Library,
)
from torchodeinterface.radau5._options import Radau5Arguments, Radau5Options
from torchodeinterface.radau5._radau5 import (
    Radau5Result,
    ReturnCode,
    radau5,
    radau5_i32,
)

__all__ = [
    "CallbackBridge",
    "DL_RADAU5",
    "DL_RADAU5_I32",
    "DenseOutputEvaluator",
    "Radau5Arguments",
    "Radau5Library",
    "Radau5Options",
    "Radau5Result",
    "ReturnCode",
    "evaluate_dense_output",
    "no_dense_output",
    "radau5",
    "radau5_i32",
]
