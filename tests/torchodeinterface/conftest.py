"""Test fixtures for torchodeinterface tests.

``FakeRadau5`` stands in for the compiled kernel. It follows RADAU5's
calling sequence (mass matrix once, Jacobian once, right-hand side and step
notification every step, IDID and the IWORK counters at the end) but
integrates with explicit Euler steps of fixed size. Its continuation buffer
holds ``[t_old, t_new, y_old..., y_new...]`` and its CONTR5 interpolates
linearly, so dense output results are easy to predict.
"""

import ctypes

import numpy
import pytest

from torchodeinterface.callback import INT32, INT64
from torchodeinterface.radau5 import Radau5Library

_REAL = ctypes.POINTER(ctypes.c_double)


def _real(array: numpy.ndarray):
    return array.ctypes.data_as(_REAL)


class FakeRadau5:
    """Python kernel with the RADAU5 and CONTR5 signatures.

    Parameters
    ----------
    integer : NativeInteger
        Integer width to emulate.
    steps : int
        Number of Euler steps over the integration interval.

    Attributes
    ----------
    jacobian : ndarray or None
        Copy of the Jacobian buffer filled in the last run, shape
        (leading dimension, n).
    mass : ndarray or None
        Copy of the mass matrix buffer filled in the last run, shape
        (leading dimension, n - m1).
    contr5_calls : int
        Number of CONTR5 calls so far.
    """

    def __init__(self, integer, steps=10):
        self.integer = integer
        self.steps = steps
        self.jacobian = None
        self.mass = None
        self.contr5_calls = 0

        Int = integer.pointer
        contr5_type = ctypes.CFUNCTYPE(
            ctypes.c_double, Int, _REAL, _REAL, Int
        )
        self._contr5 = contr5_type(self._interpolate)

    @property
    def library(self) -> Radau5Library:
        return Radau5Library(self.radau5, self._contr5, self.integer)

    def _integer_pointer(self, array: numpy.ndarray):
        return array.ctypes.data_as(self.integer.pointer)

    def _interpolate(self, i_, s_, cont_, lrc_):
        self.contr5_calls += 1
        i = i_[0]
        s = s_[0]
        n = (lrc_[0] - 2) // 2
        t_old, t_new = cont_[0], cont_[1]
        y_old, y_new = cont_[1 + i], cont_[1 + n + i]
        if t_new == t_old:
            return y_new
        theta = (s - t_old) / (t_new - t_old)
        return y_old + theta * (y_new - y_old)

    def radau5(
        self,
        n_,
        fcn_,
        x_,
        y_,
        xend_,
        h_,
        rtol_,
        atol_,
        itol_,
        jac_,
        ijac_,
        mljac_,
        mujac_,
        mas_,
        imas_,
        mlmas_,
        mumas_,
        solout_,
        iout_,
        work_,
        lwork_,
        iwork_,
        liwork_,
        rpar_,
        ipar_,
        idid_,
    ):
        ints = self.integer.array
        n = n_[0]
        m1 = iwork_[8]
        nm1 = n - m1
        t = x_[0]
        t_end = xend_[0]
        y = numpy.ctypeslib.as_array(y_, shape=(n,))
        h = (t_end - t) / self.steps

        self.jacobian = None
        self.mass = None
        if imas_[0] != 0:
            mlmas = mlmas_[0]
            lmas = nm1 if mlmas == nm1 else 1 + mlmas + mumas_[0]
            buffer = numpy.zeros(lmas * nm1)
            mas_(
                self._integer_pointer(ints([nm1])),
                _real(buffer),
                self._integer_pointer(ints([lmas])),
                rpar_,
                ipar_,
            )
            self.mass = buffer.reshape(nm1, lmas).T.copy()

        jacobian_calls = 0
        if ijac_[0] != 0:
            mljac = mljac_[0]
            if mljac < nm1:
                ldjac = 1 + mljac + mujac_[0]
            else:
                ldjac = nm1
            buffer = numpy.zeros(ldjac * n)
            jac_(
                n_,
                x_,
                y_,
                _real(buffer),
                self._integer_pointer(ints([ldjac])),
                rpar_,
                ipar_,
            )
            jacobian_calls += 1
            self.jacobian = buffer.reshape(n, ldjac).T.copy()

        cont = numpy.zeros(2 + 2 * n)
        lrc = ints([cont.shape[0]])
        irtrn = ints([0])
        nr = ints([1])
        t_old = numpy.zeros(1)
        f = numpy.zeros(n)
        rhs_calls = 0
        accepted = 0
        iout = iout_[0]

        def notify():
            t_old[0] = cont[0]
            solout_(
                self._integer_pointer(nr),
                _real(t_old),
                x_,
                y_,
                _real(cont),
                self._integer_pointer(lrc),
                n_,
                rpar_,
                ipar_,
                self._integer_pointer(irtrn),
            )

        cont[0] = cont[1] = t
        cont[2 : 2 + n] = y
        cont[2 + n :] = y
        if iout != 0:
            notify()

        idid = 1
        while accepted < self.steps and irtrn[0] >= 0:
            fcn_(n_, x_, y_, _real(f), rpar_, ipar_)
            rhs_calls += 1
            cont[0] = x_[0]
            cont[2 : 2 + n] = y
            y += h * f
            x_[0] = t_end if accepted == self.steps - 1 else x_[0] + h
            cont[1] = x_[0]
            cont[2 + n :] = y
            accepted += 1
            if iout != 0:
                nr[0] += 1
                notify()
        if irtrn[0] < 0:
            idid = 2

        h_[0] = h
        iwork_[13] = rhs_calls
        iwork_[14] = jacobian_calls
        iwork_[15] = accepted
        iwork_[16] = accepted
        iwork_[17] = 0
        iwork_[18] = jacobian_calls
        iwork_[19] = accepted
        idid_[0] = idid


@pytest.fixture(params=[INT64, INT32], ids=["int64", "int32"])
def integer(request):
    return request.param


@pytest.fixture
def fake_radau5(integer):
    return FakeRadau5(integer)


@pytest.fixture
def make_fake_radau5():
    return FakeRadau5
