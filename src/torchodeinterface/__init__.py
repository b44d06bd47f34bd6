"""torchodeinterface: PyTorch callbacks for Fortran ODE and DAE solvers."""

from . import (
    banded_matrix,
    callback,
    radau5,
)

__all__ = [
    "banded_matrix",
    "callback",
    "radau5",
]

__version__ = "0.1.0"
