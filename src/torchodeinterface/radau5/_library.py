"""Binding of the RADAU5 shared library."""

import ctypes
import ctypes.util
import logging
import os
from typing import Callable, Optional

from torchodeinterface.callback._native_integer import INT64, NativeInteger

logger = logging.getLogger(__name__)

DL_RADAU5 = "radau5"
"""Library name of the RADAU5 build with 64-bit integers."""

DL_RADAU5_I32 = "radau5_i32"
"""Library name of the RADAU5 build with 32-bit integers."""

_REAL = ctypes.POINTER(ctypes.c_double)


class Radau5Library:
    """
    The two foreign routines a RADAU5 run needs.

    Parameters
    ----------
    radau5 : callable
        The integrator ``RADAU5(N, FCN, X, Y, XEND, H, RTOL, ATOL, ITOL,
        JAC, IJAC, MLJAC, MUJAC, MAS, IMAS, MLMAS, MUMAS, SOLOUT, IOUT,
        WORK, LWORK, IWORK, LIWORK, RPAR, IPAR, IDID)``.
    contr5 : callable
        The continuous extension ``CONTR5(I, S, CONT, LRC) -> double``.
    integer : NativeInteger
        Integer width the routines were compiled with.

    Notes
    -----
    Any callables with these signatures work, which lets tests drive the
    callbacks without a compiled kernel.
    """

    def __init__(
        self,
        radau5: Callable,
        contr5: Callable,
        integer: NativeInteger = INT64,
    ):
        self.radau5 = radau5
        self.contr5 = contr5
        self.integer = integer

    @classmethod
    def load(
        cls,
        name: Optional[str] = None,
        integer: NativeInteger = INT64,
        radau5_symbol: str = "radau5_",
        contr5_symbol: str = "contr5_",
    ) -> "Radau5Library":
        """
        Load a compiled RADAU5 shared library.

        Parameters
        ----------
        name : str, optional
            Path of the shared library, or a library name resolved with
            :func:`ctypes.util.find_library`. Defaults to ``"radau5"`` for
            64-bit and ``"radau5_i32"`` for 32-bit integers.
        integer : NativeInteger
            Integer width the library was compiled with.
        radau5_symbol, contr5_symbol : str
            Exported symbol names (gfortran appends an underscore).

        Raises
        ------
        FileNotFoundError
            If the library cannot be found.
        """
        if name is None:
            name = DL_RADAU5 if integer.bits == 64 else DL_RADAU5_I32
        path = name if os.path.exists(name) else ctypes.util.find_library(name)
        if path is None:
            raise FileNotFoundError(
                f"cannot find the shared library {name!r}; compile RADAU5 "
                f"with {integer.bits}-bit integers and pass its path"
            )
        logger.debug("loading %s from %s", name, path)
        library = ctypes.CDLL(path)

        Int = integer.pointer
        fcn = ctypes.c_void_p
        radau5 = getattr(library, radau5_symbol)
        radau5.restype = None
        radau5.argtypes = [
            Int, fcn,                      # N, FCN
            _REAL, _REAL, _REAL, _REAL,    # X, Y, XEND, H
            _REAL, _REAL, Int,             # RTOL, ATOL, ITOL
            fcn, Int, Int, Int,            # JAC, IJAC, MLJAC, MUJAC
            fcn, Int, Int, Int,            # MAS, IMAS, MLMAS, MUMAS
            fcn, Int,                      # SOLOUT, IOUT
            _REAL, Int, Int, Int,          # WORK, LWORK, IWORK, LIWORK
            _REAL, Int, Int,               # RPAR, IPAR, IDID
        ]  # fmt: skip
        contr5 = getattr(library, contr5_symbol)
        contr5.restype = ctypes.c_double
        contr5.argtypes = [Int, _REAL, _REAL, Int]
        return cls(radau5, contr5, integer)
