import math

import numpy
import pytest

from torchodeinterface.callback import INT32, INT64, CallRegistry
from torchodeinterface.radau5 import (
    CallbackBridge,
    Radau5Arguments,
    Radau5Options,
)


def _build(
    d=3,
    m1=0,
    m2=0,
    rtol=1e-3,
    integer=INT64,
    has_jacobian=False,
    jacobian_bandwidth=None,
    mass_bandwidth=None,
    has_mass=False,
    has_output=False,
    options=None,
):
    return Radau5Arguments.build(
        integer,
        0.0,
        2.0,
        numpy.ones(d),
        numpy.array([rtol]),
        numpy.array([1e-6]),
        m1,
        m2,
        has_jacobian=has_jacobian,
        jacobian_bandwidth=jacobian_bandwidth,
        mass_bandwidth=mass_bandwidth,
        has_mass=has_mass,
        has_output=has_output,
        options=options or Radau5Options(),
    )


class TestRadau5Options:
    def test_defaults(self):
        options = Radau5Options()
        assert options.max_steps == 100000
        assert options.max_newton_iterations == 7
        assert options.safety_factor == 0.9

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"eps": 1.0},
            {"eps": 1e-20},
            {"max_steps": 0},
            {"max_newton_iterations": -1},
            {"step_size_strategy": 3},
            {"safety_factor": 1.5},
            {"jacobian_recompute_factor": 0.0},
            {"freeze_step_size": (1.1, 1.2)},
            {"step_size_selection": (0.2, 0.9)},
            {"max_step_size": 0.0},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            Radau5Options(**kwargs)


class TestRadau5Arguments:
    def test_work_sizes_full(self):
        arguments = _build(d=3)
        assert arguments.lwork[0] == 3 * (3 + 0 + 3 * 3 + 12) + 20
        assert arguments.liwork[0] == 3 * 3 + 20
        assert arguments.work.shape == (arguments.lwork[0],)
        assert arguments.iwork.shape == (arguments.liwork[0],)

    def test_work_sizes_banded(self):
        arguments = _build(d=5, has_jacobian=True, jacobian_bandwidth=(1, 1))
        assert arguments.ijac[0] == 1
        assert (arguments.mljac[0], arguments.mujac[0]) == (1, 1)
        assert arguments.lwork[0] == 5 * (3 + 0 + 3 * 4 + 12) + 20

    def test_work_sizes_special_structure(self):
        arguments = _build(d=4, m1=2, m2=2)
        assert arguments.lwork[0] == 4 * (2 + 12) + 2 * (0 + 3 * 2) + 20
        assert arguments.iwork[8] == 2
        assert arguments.iwork[9] == 2

    def test_mass_matrix(self):
        arguments = _build(d=3, has_mass=True, mass_bandwidth=(1, 0))
        assert arguments.imas[0] == 1
        assert (arguments.mlmas[0], arguments.mumas[0]) == (1, 0)
        assert arguments.lwork[0] == 3 * (3 + 2 + 3 * 3 + 12) + 20

    def test_full_mass_matrix(self):
        arguments = _build(d=3, has_mass=True)
        assert (arguments.mlmas[0], arguments.mumas[0]) == (3, 3)

    def test_work_defaults(self):
        arguments = _build(d=2, rtol=1e-4)
        assert arguments.work[0] == 1e-16
        assert arguments.work[1] == 0.9
        assert arguments.work[2] == 0.001
        assert arguments.work[3] == pytest.approx(min(0.03, math.sqrt(1e-4)))
        assert arguments.work[4:6].tolist() == [1.0, 1.2]
        assert arguments.work[6] == 2.0
        assert arguments.work[7:9].tolist() == [0.2, 8.0]
        assert arguments.h[0] == 1e-6

    def test_iwork_options(self):
        options = Radau5Options(
            transform_jacobian_to_hessenberg=True,
            max_steps=500,
            newton_start_zero=True,
            index_dimensions=(2, 1, 0),
            step_size_strategy=2,
        )
        arguments = _build(d=3, options=options)
        expected = [1, 500, 7, 1, 2, 1, 0, 2, 0, 0]
        assert arguments.iwork[:10].tolist() == expected

    def test_vector_tolerances(self):
        arguments = Radau5Arguments.build(
            INT64,
            0.0,
            1.0,
            numpy.ones(2),
            numpy.array([1e-3, 1e-4]),
            numpy.array([1e-6, 1e-7]),
            0,
            0,
            has_jacobian=False,
            jacobian_bandwidth=None,
            mass_bandwidth=None,
            has_mass=False,
            has_output=True,
            options=Radau5Options(),
        )
        assert arguments.itol[0] == 1
        assert arguments.iout[0] == 1

    def test_hessenberg_conflicts_with_mass(self):
        options = Radau5Options(transform_jacobian_to_hessenberg=True)
        with pytest.raises(ValueError, match="hessenberg"):
            _build(has_mass=True, options=options)

    def test_index_dimensions_must_sum_to_d(self):
        with pytest.raises(ValueError, match="index_dimensions"):
            _build(d=3, options=Radau5Options(index_dimensions=(1, 1, 0)))

    def test_newton_stop_criterion_too_small(self):
        options = Radau5Options(newton_stop_criterion=1e-20)
        with pytest.raises(ValueError, match="newton_stop_criterion"):
            _build(options=options)

    @pytest.mark.parametrize("integer", [INT32, INT64])
    def test_integer_arrays(self, integer):
        arguments = _build(integer=integer)
        assert arguments.iwork.dtype == integer.dtype
        assert arguments.ipar.shape == (2,)

    def test_statistics(self):
        arguments = _build()
        arguments.iwork[13:20] = [11, 2, 9, 8, 1, 3, 40]
        assert arguments.statistics() == {
            "rhs_calls": 11,
            "jacobian_calls": 2,
            "steps": 9,
            "accepted_steps": 8,
            "rejected_steps": 1,
            "lu_decompositions": 3,
            "forward_backward_substitutions": 40,
        }

    def test_foreign_arguments(self):
        bridge = CallbackBridge(CallRegistry(), INT64)
        arguments = _build()
        foreign = arguments.foreign_arguments(bridge)

        assert len(foreign) == 26
        assert foreign[1] is bridge.rhs_callback
        assert foreign[9] is bridge.jacobian_callback
        assert foreign[13] is bridge.mass_callback
        assert foreign[17] is bridge.solout_callback
        assert foreign[0][0] == 3
        foreign[2][0] = 0.5
        assert arguments.t[0] == 0.5
