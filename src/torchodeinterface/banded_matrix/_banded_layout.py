"""Band storage descriptor."""

from dataclasses import dataclass
from typing import Tuple

from torchodeinterface.callback._exceptions import LayoutViolation


@dataclass(frozen=True)
class BandedLayout:
    """
    How a rows x cols matrix with a band structure is packed.

    The buffer has ``1 + lower + upper`` rows and ``cols`` columns. Element
    (i, j) of the matrix lives at buffer row ``i - j + upper``, column j, so
    diagonal k (0 main, negative below, positive above) occupies buffer row
    ``upper - k``. This is the LAPACK / ``scipy.linalg.solve_banded``
    convention.

    A lower bandwidth of ``rows - 1`` means the matrix is not actually
    banded; such layouts are stored densely (see :attr:`is_full`).

    Raises
    ------
    LayoutViolation
        If a bandwidth is negative or does not fit the matrix.
    """

    lower: int
    upper: int
    rows: int
    cols: int

    def __post_init__(self):
        if self.rows <= 0 or self.cols <= 0:
            raise LayoutViolation(
                f"matrix must be non-empty, got {self.rows}x{self.cols}"
            )
        if not 0 <= self.lower < self.rows:
            raise LayoutViolation(
                f"lower bandwidth must be in [0, {self.rows - 1}], "
                f"got {self.lower}"
            )
        if not 0 <= self.upper < self.cols:
            raise LayoutViolation(
                f"upper bandwidth must be in [0, {self.cols - 1}], "
                f"got {self.upper}"
            )

    @property
    def buffer_rows(self) -> int:
        return 1 + self.lower + self.upper

    @property
    def buffer_shape(self) -> Tuple[int, int]:
        if self.is_full:
            return (self.rows, self.cols)
        return (self.buffer_rows, self.cols)

    @property
    def is_full(self) -> bool:
        return self.lower == self.rows - 1

    def in_band(self, i: int, j: int) -> bool:
        return -self.upper <= i - j <= self.lower

    def storage_row(self, i: int, j: int) -> int:
        return i - j + self.upper

    def diagonal_columns(self, k: int) -> Tuple[int, int]:
        """Half-open range of columns crossed by diagonal ``k``."""
        return max(0, k), min(self.cols, self.rows + k)
