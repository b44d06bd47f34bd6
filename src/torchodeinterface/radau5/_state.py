"""Flat float64 vectors for Tensor and TensorDict solver states."""

import math
from typing import Callable, Tuple, Union

import torch
from tensordict import TensorDict

State = Union[torch.Tensor, TensorDict]


def flatten_state(y: State) -> Tuple[torch.Tensor, Callable[..., State]]:
    """
    Lay out a state as the kernel's flat float64 vector.

    Parameters
    ----------
    y : Tensor or TensorDict
        A Tensor of any shape or an unbatched, possibly nested TensorDict.

    Returns
    -------
    flat : Tensor
        1-D float64 tensor.
    unflatten : callable
        Maps a flat tensor of the same length back to the structure of
        ``y``. The result shares memory with its argument.

    Notes
    -----
    TensorDict leaves are concatenated in the sorted order of their
    dot-joined keys, independent of insertion order.
    """
    if isinstance(y, torch.Tensor):
        shape = y.shape
        return y.reshape(-1).to(torch.float64), lambda x: x.reshape(shape)

    if y.batch_dims != 0:
        raise ValueError(
            f"TensorDict states must be unbatched, got batch_size "
            f"{tuple(y.batch_size)}"
        )
    leaves = y.flatten_keys(".")
    keys = sorted(leaves.keys())
    shapes = [leaves[key].shape for key in keys]
    sizes = [math.prod(shape) for shape in shapes]
    flat = torch.cat(
        [leaves[key].reshape(-1).to(torch.float64) for key in keys]
    )

    def unflatten(x: torch.Tensor) -> TensorDict:
        parts = torch.split(x, sizes)
        return TensorDict(
            {
                key: part.reshape(shape)
                for key, part, shape in zip(keys, parts, shapes)
            },
            batch_size=(),
        ).unflatten_keys(".")

    return flat, unflatten
