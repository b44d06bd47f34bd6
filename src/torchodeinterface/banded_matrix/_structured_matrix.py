"""Conversion between logical matrices and kernel matrix buffers.

The kernel exchanges matrices as column-major arrays with a leading
dimension. A matrix is either stored densely or in band storage. Under the
special structure (M1 > 0) only the trailing (d - M1) x d part of the
Jacobian is exchanged; the leading M1 rows are implied by the structure and
never materialized. When that part is banded it is split into 1 + M1/M2
blocks of size M2 x M2 that share one bandwidth.
"""

from typing import List, Optional, Tuple, Union

from torch import Tensor

from torchodeinterface.banded_matrix._banded_layout import BandedLayout
from torchodeinterface.banded_matrix._banded_matrix import BandedMatrix
from torchodeinterface.callback._exceptions import LayoutViolation


def normalize_band_structure(
    bandwidth: Optional[Tuple[int, int]],
    rows: int,
    cols: Optional[int] = None,
) -> Optional[Tuple[int, int]]:
    """
    Validate a (lower, upper) bandwidth for a rows x cols region.

    Returns ``None`` for a full matrix. A lower bandwidth of ``rows - 1``
    is treated as full, so encoding and decoding agree on such matrices.

    Raises
    ------
    LayoutViolation
        If the bandwidth does not fit the region.
    """
    if bandwidth is None:
        return None
    if len(bandwidth) != 2:
        raise LayoutViolation(
            f"bandwidth must be a (lower, upper) pair, got {bandwidth!r}"
        )
    lower, upper = (int(b) for b in bandwidth)
    if lower == rows - 1:
        return None
    BandedLayout(lower, upper, rows, rows if cols is None else cols)
    return lower, upper


def encode_matrix(
    matrix: Union[Tensor, BandedMatrix],
    buffer: Tensor,
) -> None:
    """
    Write ``matrix`` into the kernel buffer ``buffer``.

    Parameters
    ----------
    matrix : Tensor or BandedMatrix
        Logical matrix. A banded matrix whose lower bandwidth is
        ``rows - 1`` is written densely.
    buffer : Tensor
        2-D view of the kernel buffer, shape (leading dimension, cols).
    """
    if isinstance(matrix, BandedMatrix):
        if matrix.layout.is_full:
            matrix = matrix.to_dense()
        else:
            expected = matrix.layout.buffer_shape
            if tuple(buffer.shape) != expected:
                raise LayoutViolation(
                    f"band buffer must have shape {expected}, "
                    f"got {tuple(buffer.shape)}"
                )
            buffer.copy_(matrix.data)
            return
    if tuple(buffer.shape) != tuple(matrix.shape):
        raise LayoutViolation(
            f"dense buffer must have shape {tuple(matrix.shape)}, "
            f"got {tuple(buffer.shape)}"
        )
    buffer.copy_(matrix)


def decode_matrix(
    buffer: Tensor,
    layout: Optional[BandedLayout] = None,
) -> Tensor:
    """
    Read the logical matrix held in a kernel buffer.

    ``layout=None`` or a layout with ``is_full`` means dense storage.
    """
    if layout is None:
        return buffer.clone()
    if tuple(buffer.shape) != layout.buffer_shape:
        raise LayoutViolation(
            f"buffer for {layout} must have shape {layout.buffer_shape}, "
            f"got {tuple(buffer.shape)}"
        )
    if layout.is_full:
        return buffer.clone()
    return BandedMatrix(
        buffer, layout.lower, layout.upper, layout.rows
    ).to_dense()


def jacobian_block_count(m1: int, m2: int) -> int:
    """Number of Jacobian blocks exchanged under the special structure."""
    if m1 == 0:
        return 1
    return 1 + m1 // m2


def split_jacobian_blocks(
    buffer: Tensor,
    bandwidth: Optional[Tuple[int, int]],
    m1: int = 0,
    m2: int = 0,
) -> List[Union[Tensor, BandedMatrix]]:
    """
    Split a Jacobian buffer into the blocks handed to user code.

    Parameters
    ----------
    buffer : Tensor
        2-D view of the kernel Jacobian buffer, shape (leading dimension, d).
    bandwidth : tuple of int, optional
        Common (lower, upper) bandwidth, already normalized. ``None`` means
        the Jacobian is full.
    m1, m2 : int
        Special structure partition.

    Returns
    -------
    blocks : list
        Views over ``buffer``: one dense (d - m1) x d tensor for a full
        Jacobian, one d x d :class:`BandedMatrix` for a banded Jacobian
        without special structure, or ``1 + m1 // m2`` banded m2 x m2
        blocks otherwise. Block k covers columns ``k*m2`` to ``(k+1)*m2``.
    """
    if bandwidth is None:
        return [buffer]
    lower, upper = bandwidth
    d = buffer.shape[1]
    if m1 == 0:
        return [BandedMatrix(buffer, lower, upper, d)]
    count = jacobian_block_count(m1, m2)
    if count * m2 != d:
        raise LayoutViolation(
            f"banded Jacobian blocks need m1 + m2 == d, "
            f"got m1={m1}, m2={m2}, d={d}"
        )
    return [
        BandedMatrix(buffer[:, k * m2 : (k + 1) * m2], lower, upper, m2)
        for k in range(count)
    ]
