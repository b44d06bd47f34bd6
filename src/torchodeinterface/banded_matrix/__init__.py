"""
Banded and block-structured matrices for foreign kernels.

BandedLayout
    Shape and bandwidths of a band-stored matrix.
BandedMatrix
    Matrix backed by band storage, possibly a view over a kernel buffer.
encode_matrix, decode_matrix
    Write a logical matrix into, or read it from, a kernel buffer.
split_jacobian_blocks
    Partition a Jacobian buffer into the blocks user code fills.
normalize_band_structure
    Validate a bandwidth, mapping "lower == rows - 1" to full storage.
"""

from torchodeinterface.banded_matrix._banded_layout import BandedLayout
from torchodeinterface.banded_matrix._banded_matrix import BandedMatrix
from torchodeinterface.banded_matrix._structured_matrix import (
    decode_matrix,
    encode_matrix,
    jacobian_block_count,
    normalize_band_structure,
    split_jacobian_blocks,
)

__all__ = [
    "BandedLayout",
    "BandedMatrix",
    "decode_matrix",
    "encode_matrix",
    "jacobian_block_count",
    "normalize_band_structure",
    "split_jacobian_blocks",
]
