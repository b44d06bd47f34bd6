"""Tensor views over buffers owned by a foreign kernel.

The kernel hands out raw pointers whose extent follows from the dimension
and leading-dimension arguments of the same call. These helpers turn a
pointer plus its extent into a ``torch.Tensor`` sharing the memory, valid
for the duration of the callback only.
"""

import numpy
import torch
from torch import Tensor


def vector_view(pointer, length: int) -> Tensor:
    """View ``length`` doubles starting at ``pointer``."""
    if length < 0:
        raise ValueError(f"length must be non-negative, got {length}")
    if length == 0:
        return torch.zeros(0, dtype=torch.float64)
    return torch.from_numpy(numpy.ctypeslib.as_array(pointer, shape=(length,)))


def matrix_view(pointer, leading_dimension: int, cols: int) -> Tensor:
    """View a column-major ``leading_dimension x cols`` array of doubles.

    Element (i, j) of the result is ``pointer[i + j * leading_dimension]``.
    """
    if leading_dimension <= 0 or cols <= 0:
        raise ValueError(
            f"matrix extent must be positive, got "
            f"{leading_dimension}x{cols}"
        )
    array = numpy.ctypeslib.as_array(pointer, shape=(cols, leading_dimension))
    return torch.from_numpy(array.T)
