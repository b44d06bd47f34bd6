"""Banded matrix backed by band storage."""

from typing import Optional, Tuple

import torch
from torch import Tensor

from torchodeinterface.banded_matrix._banded_layout import BandedLayout
from torchodeinterface.callback._exceptions import LayoutViolation


class BandedMatrix:
    """
    A matrix whose nonzero entries lie within ``lower`` diagonals below and
    ``upper`` diagonals above the main diagonal.

    Only the band is stored, in a ``(1 + lower + upper, cols)`` tensor laid
    out as described in :class:`BandedLayout`. The storage tensor may be a
    view over a buffer owned by a foreign kernel, in which case writes
    through this object land directly in the kernel's memory.

    Parameters
    ----------
    data : Tensor
        Band storage, shape (1 + lower + upper, cols).
    lower : int
        Lower bandwidth.
    upper : int
        Upper bandwidth.
    rows : int, optional
        Number of rows. Defaults to ``cols``.

    Examples
    --------
    >>> m = BandedMatrix.zeros(4, 4, lower=1, upper=0)
    >>> m[1, 0] = 2.0
    >>> m.to_dense()[1, 0]
    tensor(2., dtype=torch.float64)
    """

    def __init__(
        self,
        data: Tensor,
        lower: int,
        upper: int,
        rows: Optional[int] = None,
    ):
        if data.dim() != 2:
            raise LayoutViolation(
                f"band storage must be 2-D, got shape {tuple(data.shape)}"
            )
        cols = data.shape[1]
        self.layout = BandedLayout(
            int(lower), int(upper), cols if rows is None else int(rows), cols
        )
        if data.shape[0] != self.layout.buffer_rows:
            raise LayoutViolation(
                f"band storage for bandwidths ({lower}, {upper}) needs "
                f"{self.layout.buffer_rows} rows, got {data.shape[0]}"
            )
        self.data = data

    @classmethod
    def zeros(
        cls,
        rows: int,
        cols: int,
        lower: int,
        upper: int,
        dtype: torch.dtype = torch.float64,
    ) -> "BandedMatrix":
        data = torch.zeros(1 + lower + upper, cols, dtype=dtype)
        return cls(data, lower, upper, rows)

    @classmethod
    def from_dense(
        cls, matrix: Tensor, lower: int, upper: int
    ) -> "BandedMatrix":
        """Pack the band of ``matrix``; entries outside it are dropped."""
        rows, cols = matrix.shape
        banded = cls.zeros(rows, cols, lower, upper, dtype=matrix.dtype)
        for k in range(-lower, upper + 1):
            j0, j1 = banded.layout.diagonal_columns(k)
            if j0 >= j1:
                continue
            j = torch.arange(j0, j1)
            banded.data[upper - k, j0:j1] = matrix[j - k, j]
        return banded

    @property
    def lower(self) -> int:
        return self.layout.lower

    @property
    def upper(self) -> int:
        return self.layout.upper

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.layout.rows, self.layout.cols)

    def _check_index(self, i: int, j: int) -> None:
        rows, cols = self.shape
        if not (0 <= i < rows and 0 <= j < cols):
            raise IndexError(
                f"index ({i}, {j}) out of range for a {rows}x{cols} matrix"
            )

    def __getitem__(self, index: Tuple[int, int]) -> Tensor:
        i, j = index
        self._check_index(i, j)
        if not self.layout.in_band(i, j):
            return self.data.new_zeros(())
        return self.data[self.layout.storage_row(i, j), j]

    def __setitem__(self, index: Tuple[int, int], value) -> None:
        i, j = index
        self._check_index(i, j)
        if not self.layout.in_band(i, j):
            raise LayoutViolation(
                f"({i}, {j}) lies outside the band "
                f"({self.lower}, {self.upper})"
            )
        self.data[self.layout.storage_row(i, j), j] = value

    def diagonal(self, k: int = 0) -> Tensor:
        """View of diagonal ``k`` (0 main, negative below, positive above)."""
        if not -self.lower <= k <= self.upper:
            raise LayoutViolation(
                f"diagonal {k} lies outside the band "
                f"({self.lower}, {self.upper})"
            )
        j0, j1 = self.layout.diagonal_columns(k)
        return self.data[self.upper - k, j0:j1]

    def set_diagonal(self, k: int, values) -> None:
        self.diagonal(k).copy_(torch.as_tensor(values, dtype=self.data.dtype))

    def to_dense(self) -> Tensor:
        rows, cols = self.shape
        dense = self.data.new_zeros(rows, cols)
        for k in range(-self.lower, self.upper + 1):
            j0, j1 = self.layout.diagonal_columns(k)
            if j0 >= j1:
                continue
            j = torch.arange(j0, j1)
            dense[j - k, j] = self.data[self.upper - k, j0:j1]
        return dense

    def __repr__(self) -> str:
        rows, cols = self.shape
        return (
            f"BandedMatrix({rows}x{cols}, lower={self.lower}, "
            f"upper={self.upper})"
        )
