"""Packing of call ids into the integer parameter array of a kernel."""

from typing import Sequence

import numpy

from torchodeinterface.callback._native_integer import NativeInteger

_UINT64_MASK = 0xFFFFFFFFFFFFFFFF


def _to_signed(value: int, bits: int) -> int:
    """Reinterpret an unsigned value as a two's complement integer."""
    if value >= 1 << (bits - 1):
        return value - (1 << bits)
    return value


class IdentifierCodec:
    """
    Encode and decode 64-bit call ids in native integer cells.

    A 64-bit kernel stores the id in one cell. A 32-bit kernel stores it in
    two cells, low half first.

    Parameters
    ----------
    integer : NativeInteger
        Integer width of the kernel build.

    Examples
    --------
    >>> from torchodeinterface.callback import INT32, IdentifierCodec
    >>> codec = IdentifierCodec(INT32)
    >>> codec.decode(codec.encode(2**40 + 7))
    1099511627783
    """

    def __init__(self, integer: NativeInteger):
        self.integer = integer
        self.cells = integer.identifier_cells
        self._cell_mask = (1 << integer.bits) - 1

    def encode(self, call_id: int) -> numpy.ndarray:
        """Return a fresh native integer array holding ``call_id``."""
        slot = self.integer.zeros(self.cells)
        self.encode_into(call_id, slot)
        return slot

    def encode_into(self, call_id: int, slot) -> None:
        """Write ``call_id`` into the first cells of ``slot``."""
        if not 0 < call_id <= _UINT64_MASK:
            raise ValueError(
                f"call id must be in [1, 2**64 - 1], got {call_id}"
            )
        bits = self.integer.bits
        for k in range(self.cells):
            cell = (call_id >> (k * bits)) & self._cell_mask
            slot[k] = _to_signed(cell, bits)

    def decode(self, slot: Sequence[int]) -> int:
        """Reassemble the unsigned call id from the cells of ``slot``.

        ``slot`` can be a ctypes pointer into the foreign integer array or
        any indexable sequence of cells.
        """
        bits = self.integer.bits
        call_id = 0
        for k in range(self.cells):
            call_id |= (int(slot[k]) & self._cell_mask) << (k * bits)
        return call_id
