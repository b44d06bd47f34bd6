"""Native integer widths of the foreign kernel builds.

The Fortran kernels are compiled either with default 4-byte integers or
with ``-fdefault-integer-8``. Everything that depends on the width reads it
from a :class:`NativeInteger` instance.
"""

import ctypes
from dataclasses import dataclass

import numpy


@dataclass(frozen=True)
class NativeInteger:
    """Integer type used by one build of a foreign kernel.

    Attributes
    ----------
    name : str
        Short name, ``"int32"`` or ``"int64"``.
    ctype : type
        The matching ctypes integer type.
    dtype : numpy.dtype
        The matching numpy dtype, used for integer work arrays.
    bits : int
        Width in bits.
    """

    name: str
    ctype: type
    dtype: numpy.dtype
    bits: int

    @property
    def identifier_cells(self) -> int:
        """Number of integer cells needed to hold a 64-bit call id."""
        return 64 // self.bits

    @property
    def pointer(self) -> type:
        return ctypes.POINTER(self.ctype)

    def array(self, values) -> numpy.ndarray:
        return numpy.ascontiguousarray(values, dtype=self.dtype)

    def zeros(self, length: int) -> numpy.ndarray:
        return numpy.zeros(length, dtype=self.dtype)


INT32 = NativeInteger("int32", ctypes.c_int32, numpy.dtype(numpy.int32), 32)

INT64 = NativeInteger("int64", ctypes.c_int64, numpy.dtype(numpy.int64), 64)
